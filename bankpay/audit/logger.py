"""
Audit log lines for payment lifecycle operations.

Every orchestrator decision emits one line with:
  - Tracking number (which payment)
  - Gateway (which provider, when known)
  - Action (what happened)
  - Details (context, result codes, messages)

The durable, append-only record is the transaction store; these lines
are the operational trail around it, including the attempts that never
reach the store (rejections, transport failures, cancellations).
Credentials never appear in details.
"""

import json
import logging
from typing import Any, Optional

logger = logging.getLogger("bankpay.audit")


def log_event(
    action: str,
    tracking_number: Optional[int] = None,
    gateway: Optional[str] = None,
    details: Optional[dict[str, Any]] = None,
    level: int = logging.INFO,
) -> None:
    """
    Emit an audit log line.

    Args:
        action: What happened (e.g. "request_succeeded", "verify_cached", "refund_rejected").
        tracking_number: The payment this event relates to.
        gateway: Provider identifier.
        details: Arbitrary context (serialized to JSON, truncated).
        level: Logging level, WARNING for states that need an operator.
    """
    logger.log(
        level,
        "AUDIT | tracking=%s gateway=%s action=%s | %s",
        tracking_number if tracking_number is not None else "-",
        gateway or "-",
        action,
        json.dumps(details, default=str)[:300] if details else "",
    )
