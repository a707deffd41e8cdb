from __future__ import annotations

import os
from dataclasses import dataclass
from enum import StrEnum


RECORD_STORE_BACKEND_ENV = "RECORD_STORE_BACKEND"
SUPABASE_URL_ENV = "SUPABASE_URL"
SUPABASE_KEY_ENV = "SUPABASE_KEY"
RECORD_STORE_TIMEOUT_ENV = "RECORD_STORE_TIMEOUT_SECONDS"

DEFAULT_TIMEOUT_SECONDS = 10.0


class RecordStoreBackend(StrEnum):
    REST = "rest"
    MONGO = "mongo"

    @classmethod
    def from_str(cls, value: str) -> "RecordStoreBackend":
        try:
            return cls(value.strip().lower())
        except ValueError as exc:
            allowed = ", ".join(b.value for b in cls)
            raise RuntimeError(
                f"{RECORD_STORE_BACKEND_ENV} must be one of [{allowed}], got: {value!r}"
            ) from exc


@dataclass(frozen=True, slots=True)
class RestStoreConfig:
    base_url: str
    api_key: str
    timeout: float


def get_backend() -> RecordStoreBackend:
    return RecordStoreBackend.from_str(os.getenv(RECORD_STORE_BACKEND_ENV) or "rest")


def load_rest_store_config() -> RestStoreConfig:
    """Supabase REST 접속 설정을 환경 변수에서 읽는다.

    URL/키가 없으면 애플리케이션이 즉시 실패하도록 RuntimeError 를 발생시킨다.
    """

    base_url = os.getenv(SUPABASE_URL_ENV, "").strip()
    api_key = os.getenv(SUPABASE_KEY_ENV, "").strip()
    if not base_url or not api_key:
        raise RuntimeError(
            f"{SUPABASE_URL_ENV} and {SUPABASE_KEY_ENV} environment variables are required "
            "for the REST record store",
        )

    raw_timeout = os.getenv(RECORD_STORE_TIMEOUT_ENV, "").strip()
    if not raw_timeout:
        timeout = DEFAULT_TIMEOUT_SECONDS
    else:
        try:
            timeout = float(raw_timeout)
        except ValueError as exc:
            raise RuntimeError(
                f"{RECORD_STORE_TIMEOUT_ENV} must be a float if set, got: {raw_timeout!r}"
            ) from exc
        if timeout <= 0:
            timeout = DEFAULT_TIMEOUT_SECONDS

    return RestStoreConfig(base_url=base_url, api_key=api_key, timeout=timeout)
