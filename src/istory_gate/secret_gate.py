"""Constant-time comparison of shared bearer secrets.

Used for the scheduled-job and administrative secrets. Execution time does not
depend on where two inputs first differ, and a length mismatch costs the same
as a content mismatch of the configured length.
"""

import hmac
import logging

logger = logging.getLogger(__name__)


def _to_bytes(value: str | bytes) -> bytes:
    if isinstance(value, bytes):
        return value
    return value.encode("utf-8")


def compare(provided: str | bytes, configured: str | bytes) -> bool:
    """Compare a provided secret against the configured one.

    Args:
        provided: Secret taken from the request (attacker controlled).
        configured: Secret loaded from the deployment environment.

    Returns:
        True only if both are non-empty and equal. Never raises.
    """
    try:
        provided_b = _to_bytes(provided)
        configured_b = _to_bytes(configured)

        if len(provided_b) != len(configured_b):
            # Burn the same work as the equal-length path before rejecting
            hmac.compare_digest(configured_b, configured_b)
            return False

        matched = hmac.compare_digest(provided_b, configured_b)
        return matched and len(configured_b) > 0
    except Exception:
        logger.debug("Secret comparison failed on malformed input")
        return False
