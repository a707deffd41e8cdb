from fastapi import APIRouter

from .actions import router as actions_router

api_router = APIRouter()
api_router.include_router(actions_router)  # 경로(/api, /api/index)는 router 파일 내부에서 정의되어 있음
