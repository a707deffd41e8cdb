"""Mongo 백엔드(RECORD_STORE_BACKEND=mongo) 접속 설정."""

from __future__ import annotations

import os
from dataclasses import dataclass


MONGO_URI_ENV = "MONGO_URI"
MONGO_DB_NAME_ENV = "MONGO_DB_NAME"
MONGO_TIMEOUT_MS_ENV = "MONGO_TIMEOUT_MS"

DEFAULT_MONGO_TIMEOUT_MS = 5000


@dataclass(frozen=True, slots=True)
class MongoSettings:
    uri: str
    # None 이면 URI 경로의 기본 DB 를 사용한다.
    db_name: str | None = None
    timeout_ms: int = DEFAULT_MONGO_TIMEOUT_MS


def load_mongo_settings() -> MongoSettings:
    uri = os.getenv(MONGO_URI_ENV, "").strip()
    if not uri:
        raise RuntimeError(
            f"{MONGO_URI_ENV} environment variable is required when RECORD_STORE_BACKEND=mongo",
        )

    raw_timeout = os.getenv(MONGO_TIMEOUT_MS_ENV, "").strip()
    timeout_ms = DEFAULT_MONGO_TIMEOUT_MS
    if raw_timeout:
        try:
            timeout_ms = int(raw_timeout)
        except ValueError as exc:  # noqa: TRY003
            raise RuntimeError(
                f"{MONGO_TIMEOUT_MS_ENV} must be an integer value, got: {raw_timeout!r}"
            ) from exc
        if timeout_ms <= 0:
            timeout_ms = DEFAULT_MONGO_TIMEOUT_MS

    return MongoSettings(
        uri=uri,
        db_name=os.getenv(MONGO_DB_NAME_ENV, "").strip() or None,
        timeout_ms=timeout_ms,
    )
