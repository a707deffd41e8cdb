from __future__ import annotations

import logging
import threading
from typing import Optional

from .config import RecordStoreBackend, get_backend, load_rest_store_config
from .interfaces import RecordStoreInterface


logger = logging.getLogger(__name__)


_store: Optional[RecordStoreInterface] = None
_lock = threading.Lock()


def get_record_store() -> RecordStoreInterface:
    """전역 레코드 저장소 싱글톤을 반환한다.

    RECORD_STORE_BACKEND 에 따라 REST(Supabase) 또는 Mongo 구현을 생성한다.
    FastAPI Depends 팩토리로도 사용된다.
    """

    global _store

    if _store is not None:
        return _store

    with _lock:
        if _store is not None:
            return _store

        backend = get_backend()
        if backend is RecordStoreBackend.MONGO:
            from common.mongo.client import get_database

            from .mongo import MongoRecordStore

            _store = MongoRecordStore(get_database())
        else:
            from .rest import RestRecordStore

            cfg = load_rest_store_config()
            _store = RestRecordStore(cfg.base_url, cfg.api_key, timeout=cfg.timeout)

        logger.info("record store initialized (backend=%s)", backend.value)
        return _store


def close_record_store() -> None:
    global _store

    with _lock:
        if _store is None:
            return
        _store.close()
        _store = None
