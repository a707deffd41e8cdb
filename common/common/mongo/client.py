from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from typing import Optional

from pymongo import ASCENDING, DESCENDING, MongoClient
from pymongo.database import Database

from .config import MongoSettings, load_mongo_settings


logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class IndexSpec:
    collection: str
    name: str
    keys: list[tuple[str, int]]
    unique: bool = False
    extra: dict = field(default_factory=dict)


# REST 백엔드(Postgres) 의 PK/UNIQUE 제약과 같은 조합을 Mongo 에서도 강제한다.
# 중복 insert 는 DuplicateKeyError -> RecordStoreError(409) 로 변환된다.
REWARD_INDEXES: tuple[IndexSpec, ...] = (
    IndexSpec("users", "uniq_id", [("id", ASCENDING)], unique=True),
    IndexSpec("users", "idx_ref_by", [("ref_by", ASCENDING)]),
    IndexSpec(
        "temp_actions",
        "uniq_user_action_value",
        [("user_id", ASCENDING), ("action_type", ASCENDING), ("action_id", ASCENDING)],
        unique=True,
    ),
    IndexSpec("temp_actions", "idx_created_at", [("created_at", ASCENDING)]),
    IndexSpec("tasks_new", "uniq_id", [("id", ASCENDING)], unique=True),
    IndexSpec(
        "user_tasks_new",
        "uniq_user_task",
        [("user_id", ASCENDING), ("task_id", ASCENDING)],
        unique=True,
    ),
    IndexSpec(
        "commission_history", "uniq_event_id", [("event_id", ASCENDING)], unique=True
    ),
    IndexSpec(
        "withdrawal_history",
        "idx_user_created_at_desc",
        [("user_id", ASCENDING), ("created_at", DESCENDING)],
    ),
)


def connect(settings: MongoSettings) -> tuple[MongoClient, Database]:
    """클라이언트를 만들고 ping 으로 검증한 뒤 사용할 Database 를 고른다.

    실패하면 클라이언트를 닫고 RuntimeError 를 던진다.
    """
    client: MongoClient = MongoClient(
        settings.uri,
        tz_aware=True,
        serverSelectionTimeoutMS=settings.timeout_ms,
        socketTimeoutMS=settings.timeout_ms,
    )
    try:
        client.admin.command("ping")
        db = client[settings.db_name] if settings.db_name else client.get_default_database()
    except Exception as exc:  # noqa: BLE001
        client.close()
        raise RuntimeError(f"failed to open MongoDB database: {exc}") from exc
    return client, db


def ensure_indexes(db: Database, specs: tuple[IndexSpec, ...] = REWARD_INDEXES) -> None:
    """create_index 는 같은 정의에 대해 idempotent 하다."""
    for spec in specs:
        db[spec.collection].create_index(
            spec.keys, name=spec.name, unique=spec.unique, **spec.extra
        )


_client: Optional[MongoClient] = None
_db: Optional[Database] = None
_lock = threading.Lock()


def get_database() -> Database:
    """프로세스 전역 Database. 첫 호출에서 연결하고 인덱스를 보장한다."""

    global _client, _db

    if _db is not None:
        return _db

    with _lock:
        if _db is None:
            client, db = connect(load_mongo_settings())
            try:
                ensure_indexes(db)
            except Exception:
                client.close()
                logger.exception("failed to ensure MongoDB indexes (db=%s)", db.name)
                raise
            _client, _db = client, db
            logger.info("MongoDB connected (db=%s, indexes=%d)", db.name, len(REWARD_INDEXES))
        return _db


def close_client() -> None:
    global _client, _db

    with _lock:
        if _client is not None:
            _client.close()
        _client, _db = None, None
