from __future__ import annotations

from .core import Topic


# 재시도: rewards.commission.retry.{1..3}, 소진 시 rewards.commission.dlq
TOPIC_COMMISSION = Topic("rewards.commission")
