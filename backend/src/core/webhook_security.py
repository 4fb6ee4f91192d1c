"""
Webhook security utilities for HMAC signature generation and verification.

Signatures are ``sha256=<hex>`` where the hex digest is
HMAC-SHA256(secret, "{timestamp}.{payload}"). The timestamp travels in its own
header so receivers can reject replays outside the tolerance window.
"""

import hashlib
import hmac
import time
from typing import Optional

from backend.src.core.logging import get_logger

logger = get_logger(__name__)

SIGNATURE_PREFIX = "sha256="


class WebhookSecurity:
    """
    Webhook security service for HMAC signature generation and verification.

    - HMAC-SHA256 keyed by the account's webhook secret
    - Replay protection with 5-minute tolerance window
    - Constant-time comparison to prevent timing attacks
    """

    # Replay protection window (seconds)
    TOLERANCE_WINDOW = 300  # 5 minutes

    def sign_payload(self, payload: str, secret: str, timestamp: int) -> str:
        """
        Generate HMAC-SHA256 signature for webhook payload.

        Args:
            payload: Serialized JSON payload
            secret: Account webhook secret
            timestamp: Unix timestamp in seconds

        Returns:
            Signature header value, ``sha256=<hex digest>``

        Example:
            >>> webhook_security.sign_payload('{"event":"test"}', "whsec_x", 1699000000)
            'sha256=...'
        """
        signed_payload = f"{timestamp}.{payload}"

        digest = hmac.new(
            key=secret.encode("utf-8"),
            msg=signed_payload.encode("utf-8"),
            digestmod=hashlib.sha256,
        ).hexdigest()

        return f"{SIGNATURE_PREFIX}{digest}"

    def verify_signature(
        self,
        payload: str,
        signature: str,
        secret: str,
        timestamp: int,
        tolerance_seconds: Optional[int] = None,
        now: Optional[int] = None,
    ) -> bool:
        """
        Verify a webhook signature.

        Args:
            payload: Raw request body
            signature: Value of the signature header
            secret: Account webhook secret
            timestamp: Value of the timestamp header
            tolerance_seconds: Allowed clock skew (defaults to TOLERANCE_WINDOW)
            now: Current unix time (defaults to wall clock)

        Returns:
            True if the signature matches and the timestamp is fresh
        """
        if tolerance_seconds is None:
            tolerance_seconds = self.TOLERANCE_WINDOW
        if now is None:
            now = int(time.time())

        # Check timestamp freshness (replay protection)
        time_diff = abs(now - timestamp)
        if time_diff > tolerance_seconds:
            logger.warning(
                "Webhook signature timestamp outside tolerance",
                extra={
                    "timestamp": timestamp,
                    "current_time": now,
                    "diff_seconds": time_diff,
                },
            )
            return False

        expected_signature = self.sign_payload(payload, secret, timestamp)

        # Constant-time comparison; compare_digest also handles unequal lengths
        is_valid = hmac.compare_digest(
            expected_signature.encode("utf-8"),
            signature.encode("utf-8"),
        )

        if not is_valid:
            logger.warning(
                "Webhook signature verification failed",
                extra={"timestamp": timestamp},
            )

        return is_valid


# Singleton instance
webhook_security = WebhookSecurity()

# Export
__all__ = ["SIGNATURE_PREFIX", "WebhookSecurity", "webhook_security"]
