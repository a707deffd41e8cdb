from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends

from ..config import AppConfig, get_config


router = APIRouter()


@router.get("/health", summary="헬스 체크")
def health(config: Annotated[AppConfig, Depends(get_config)]) -> dict[str, str]:
    """프로세스 생존 확인. 커미션 처리 모드를 함께 돌려준다."""
    return {"status": "ok", "commission_dispatch": config.commission_dispatch.value}
