"""Mini App 단일 진입점 라우터.

``POST /api`` (``/api/index`` 도 동일) 바디의 ``type`` 으로 동작을 선택한다.

- commission 을 제외한 모든 요청은 서명된 initData 를 검증한다.
- commission 은 서버 간 호출이며 X-Service-Key 헤더로 인증한다.
- 응답은 항상 ``{"ok": true, "data": {...}}`` / ``{"ok": false, "error": "..."}`` 봉투다.
"""

from __future__ import annotations

import hmac
import logging
from dataclasses import dataclass
from typing import Annotated, Any, Callable

import pydantic
from fastapi import APIRouter, Body, Depends, Header
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from common.recordstore.interfaces import RecordStoreError
from common.telegram.init_data import verify_init_data

from ...config import AppConfig, get_config
from ...exceptions import (
    AuthError,
    ForbiddenError,
    MethodNotAllowedError,
    RewardError,
    UpstreamError,
    ValidationError,
)
from ...models.action_token import ActionKind
from ...models.reward import CommissionRequest
from ...services.action_token_service import ActionTokenService
from ...services.commission_service import CommissionService, get_commission_service
from ...services.reward_service import (
    RewardService,
    get_action_token_service,
    get_reward_service,
)
from ...services.tasks_service import TasksService, get_tasks_service
from ...services.users_service import UsersService, get_users_service
from ..schemas.requests import ActionRequest
from ..schemas.responses import (
    ActionIdData,
    CommissionData,
    MessageData,
    RewardData,
    TasksData,
    WithdrawalData,
)


logger = logging.getLogger(__name__)


router = APIRouter(tags=["actions"])

ACTION_PATHS = ("/api", "/api/index")

SERVICE_KEY_HEADER = "X-Service-Key"
COMMISSION_TYPE = "commission"


def envelope(data: BaseModel, *, exclude_none: bool = False) -> JSONResponse:
    return JSONResponse(
        content={
            "ok": True,
            "data": data.model_dump(mode="json", by_alias=True, exclude_none=exclude_none),
        }
    )


@dataclass(slots=True)
class ActionContext:
    """요청 하나를 처리하는 데 필요한 입력과 서비스 묶음."""

    request: ActionRequest
    user_id: int
    rewards: RewardService
    users: UsersService
    tasks: TasksService
    tokens: ActionTokenService
    commissions: CommissionService


# -------- Handlers --------


def _get_user_data(ctx: ActionContext) -> JSONResponse:
    return envelope(ctx.users.get_user_data(ctx.user_id))


def _register(ctx: ActionContext) -> JSONResponse:
    ctx.users.register(ctx.user_id, ctx.request.ref_by)
    return envelope(MessageData(message="User registered/verified successfully."))


def _generate_action_id(ctx: ActionContext) -> JSONResponse:
    raw = ctx.request.action_type
    try:
        kind = ActionKind(raw)
    except ValueError as exc:
        raise ValidationError(f"Invalid action_type: {raw}") from exc
    token = ctx.tokens.issue(ctx.user_id, kind)
    return envelope(ActionIdData(action_id=token.value))


def _watch_ad(ctx: ActionContext) -> JSONResponse:
    result = ctx.rewards.watch_ad(ctx.user_id, ctx.request.action_id)
    return envelope(RewardData.from_result(result), exclude_none=True)


def _pre_spin(ctx: ActionContext) -> JSONResponse:
    ctx.rewards.pre_spin(ctx.user_id, ctx.request.action_id)
    return envelope(MessageData(message="Pre-spin checks passed."))


def _spin_result(ctx: ActionContext) -> JSONResponse:
    result = ctx.rewards.spin_result(ctx.user_id, ctx.request.action_id)
    return envelope(RewardData.from_result(result), exclude_none=True)


def _complete_channel_task(ctx: ActionContext) -> JSONResponse:
    result = ctx.rewards.complete_channel_task(ctx.user_id, ctx.request.action_id)
    return envelope(
        RewardData.from_result(result, "Task completed successfully."),
        exclude_none=True,
    )


def _get_new_tasks(ctx: ActionContext) -> JSONResponse:
    return envelope(TasksData(tasks=ctx.tasks.get_new_tasks(ctx.user_id)))


def _complete_new_task(ctx: ActionContext) -> JSONResponse:
    result = ctx.rewards.complete_task(
        ctx.user_id, ctx.request.task_id, ctx.request.action_id
    )
    return envelope(
        RewardData.from_result(
            result, "Task completed and reward claimed successfully."
        ),
        exclude_none=True,
    )


def _withdraw(ctx: ActionContext) -> JSONResponse:
    result = ctx.rewards.withdraw(
        ctx.user_id,
        ctx.request.action_id,
        ctx.request.amount,
        ctx.request.binance_id,
    )
    return envelope(
        WithdrawalData(
            new_balance=result.new_balance,
            message="Withdrawal request submitted successfully.",
        )
    )


def _commission(ctx: ActionContext) -> JSONResponse:
    req = ctx.request
    if req.referrer_id is None or req.referee_id is None or req.source_reward is None:
        raise ValidationError(
            "referrer_id, referee_id and source_reward are required."
        )
    outcome = ctx.commissions.apply(
        CommissionRequest(
            referrer_id=req.referrer_id,
            referee_id=req.referee_id,
            source_reward=req.source_reward,
            reason=COMMISSION_TYPE,
        )
    )
    return envelope(
        CommissionData(
            credited=outcome.credited,
            amount=outcome.amount,
            new_referrer_balance=outcome.new_referrer_balance,
            reason=outcome.skipped_reason,
        )
    )


HANDLERS: dict[str, Callable[[ActionContext], JSONResponse]] = {
    "getUserData": _get_user_data,
    "register": _register,
    "generateActionId": _generate_action_id,
    ActionKind.AD_VIEW.value: _watch_ad,
    ActionKind.PRE_SPIN.value: _pre_spin,
    ActionKind.SPIN_RESULT.value: _spin_result,
    ActionKind.CHANNEL_TASK.value: _complete_channel_task,
    "getNewTasks": _get_new_tasks,
    ActionKind.TASK_COMPLETE.value: _complete_new_task,
    ActionKind.WITHDRAW.value: _withdraw,
    COMMISSION_TYPE: _commission,
}


# -------- Authentication --------


def _parse_request(payload: Any) -> ActionRequest:
    if not isinstance(payload, dict):
        raise ValidationError("Invalid JSON payload.")
    try:
        req = ActionRequest.model_validate(payload)
    except pydantic.ValidationError as exc:
        field = ".".join(str(part) for part in exc.errors()[0]["loc"]) or "body"
        raise ValidationError(f"Invalid value for '{field}'.") from exc
    if not req.type:
        raise ValidationError('Missing "type" field in the request body.')
    return req


def _authenticate_service(service_key: str | None, config: AppConfig) -> None:
    expected = config.commission_service_key
    if not expected:
        raise ForbiddenError("Commission endpoint is disabled.")
    if not service_key or not hmac.compare_digest(service_key, expected):
        raise AuthError("Invalid service key.")


def _authenticate_user(req: ActionRequest, config: AppConfig) -> int:
    result = verify_init_data(
        req.init_data, config.bot_token, max_age=config.policy.init_data_max_age
    )
    if not result.valid:
        raise AuthError("Invalid or expired initData. Security check failed.")
    if req.user_id is None:
        raise ValidationError("Missing user_id in the request body.")
    if result.user_id is not None and result.user_id != req.user_id:
        raise AuthError("initData does not belong to the requested user.")
    return req.user_id


# -------- Endpoints --------


@router.post(ACTION_PATHS[0])
@router.post(ACTION_PATHS[1], include_in_schema=False)
def handle_action(
    config: Annotated[AppConfig, Depends(get_config)],
    rewards: Annotated[RewardService, Depends(get_reward_service)],
    users: Annotated[UsersService, Depends(get_users_service)],
    tasks: Annotated[TasksService, Depends(get_tasks_service)],
    tokens: Annotated[ActionTokenService, Depends(get_action_token_service)],
    commissions: Annotated[CommissionService, Depends(get_commission_service)],
    payload: Annotated[Any, Body()] = None,
    service_key: Annotated[str | None, Header(alias=SERVICE_KEY_HEADER)] = None,
) -> JSONResponse:
    """type 에 해당하는 핸들러로 요청을 보낸다."""
    req = _parse_request(payload)

    if req.type == COMMISSION_TYPE:
        _authenticate_service(service_key, config)
        user_id = 0
    else:
        user_id = _authenticate_user(req, config)

    handler = HANDLERS.get(req.type)
    if handler is None:
        raise ValidationError(f"Unknown request type: {req.type}")

    ctx = ActionContext(
        request=req,
        user_id=user_id,
        rewards=rewards,
        users=users,
        tasks=tasks,
        tokens=tokens,
        commissions=commissions,
    )
    try:
        return handler(ctx)
    except RewardError:
        raise
    except RecordStoreError as exc:
        logger.error(
            "record store failure type=%s: %s",
            req.type,
            exc,
            extra={"user_id": user_id or None, "action": req.type},
        )
        raise UpstreamError(f"Failed to process {req.type} request.") from exc
    except Exception as exc:
        logger.exception(
            "unexpected failure type=%s",
            req.type,
            extra={"user_id": user_id or None, "action": req.type},
        )
        raise UpstreamError("Internal server error.") from exc


@router.api_route(
    ACTION_PATHS[0], methods=["GET", "PUT", "PATCH", "DELETE"], include_in_schema=False
)
@router.api_route(
    ACTION_PATHS[1], methods=["GET", "PUT", "PATCH", "DELETE"], include_in_schema=False
)
def reject_method() -> JSONResponse:
    raise MethodNotAllowedError("Only POST requests are allowed.")
