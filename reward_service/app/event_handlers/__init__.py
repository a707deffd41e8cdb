"""이벤트 핸들러 패키지."""

from .commission_handler import run_commission_consumer

__all__ = ["run_commission_consumer"]
