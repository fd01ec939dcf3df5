"""Verification of rewarded-ad completion callbacks.

When ``AD_CALLBACK_SECRET`` is set, the ad bridge signs each completion with
HMAC-SHA256 over ``"{learner_id}:{nonce}"`` (hex digest). Without a secret
every report is accepted as-is.
"""

import hashlib
import hmac
import logging
import os
from typing import Optional

logger = logging.getLogger(__name__)


class AdSignatureError(Exception):
    """Raised when an ad completion report carries a missing or bad signature."""


def _secret(secret: Optional[str] = None) -> str:
    return secret if secret is not None else os.getenv("AD_CALLBACK_SECRET", "")


def sign(learner_id: str, nonce: str, secret: Optional[str] = None) -> str:
    key = _secret(secret)
    if not key:
        raise ValueError("AD_CALLBACK_SECRET is not configured")
    message = f"{learner_id}:{nonce}".encode("utf-8")
    return hmac.new(key.encode("utf-8"), message, hashlib.sha256).hexdigest()


def verify(
    learner_id: str,
    nonce: Optional[str],
    signature: Optional[str],
    secret: Optional[str] = None,
) -> None:
    """Raise ``AdSignatureError`` unless the report is acceptable."""

    key = _secret(secret)
    if not key:
        return
    if not nonce or not signature:
        raise AdSignatureError("signed ad report required (nonce and signature)")
    expected = sign(learner_id, nonce, key)
    if not hmac.compare_digest(expected, signature.strip().lower()):
        logger.warning("Rejected ad report for %s: signature mismatch", learner_id)
        raise AdSignatureError("ad report signature mismatch")
