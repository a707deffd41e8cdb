from __future__ import annotations

from datetime import datetime

from common.recordstore.interfaces import RecordStoreInterface, select_one
from common.recordstore.query import Query

from .interfaces import ActionTokenRepositoryInterface
from ..models.action_token import ActionKind, ActionToken


TEMP_ACTIONS = "temp_actions"


def _match(user_id: int, kind: ActionKind, value: str) -> Query:
    return (
        Query()
        .eq("user_id", user_id)
        .eq("action_type", kind.value)
        .eq("action_id", value)
    )


class ActionTokenRepository(ActionTokenRepositoryInterface):
    """temp_actions 컬렉션 접근 레이어."""

    def __init__(self, store: RecordStoreInterface) -> None:
        self._store = store

    def create(self, token: ActionToken) -> ActionToken:
        row = self._store.insert(
            TEMP_ACTIONS,
            {
                "user_id": token.user_id,
                "action_type": token.kind.value,
                "action_id": token.value,
                "created_at": token.created_at,
            },
        )
        return ActionToken.model_validate(row)

    def find(self, user_id: int, kind: ActionKind, value: str) -> ActionToken | None:
        row = select_one(self._store, TEMP_ACTIONS, _match(user_id, kind, value))
        if row is None:
            return None
        return ActionToken.model_validate(row)

    def delete(self, user_id: int, kind: ActionKind, value: str) -> int:
        return self._store.delete(TEMP_ACTIONS, _match(user_id, kind, value))

    def delete_created_before(self, cutoff: datetime) -> int:
        return self._store.delete(TEMP_ACTIONS, Query().lt("created_at", cutoff))
