"""Service-layer helpers for domain-specific orchestration."""

from __future__ import annotations

__all__ = [
    "dispatch_batch_full",
    "send_test_notification",
]

from .notifications import dispatch_batch_full, send_test_notification
