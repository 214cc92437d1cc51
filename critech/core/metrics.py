"""
Critech Prometheus metrics, exported through the ``/metrics`` mount.
"""
from __future__ import annotations

from prometheus_client import Counter

provider_callbacks_total = Counter(
    "critech_provider_callbacks_total",
    "Provider webhook notifications by kind and outcome",
    ["notification_type", "outcome"],
)

transcriptions_total = Counter(
    "critech_transcriptions_total",
    "Transcription job outcomes",
    ["status"],
)
