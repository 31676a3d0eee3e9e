"""Payload signing for outbound webhooks.

Three schemes are supported:

- ``hmac-sha256``: hex(HMAC-SHA256(secret, "{timestamp}.{body}")). The
  timestamp travels in ``X-Timestamp`` so receivers can recompute the MAC
  and bound how old a request they accept.
- ``jwt``: an HS256 token whose claims carry the issue time and the
  SHA-256 of the body, binding the token to this exact payload.
- ``none``: no signature header.
"""

from __future__ import annotations

import hashlib
import hmac

import jwt

from hookrelay.exceptions import ConfigurationError
from hookrelay.models import SignatureMode, Subscription

SIGNATURE_HEADER = "X-Signature"
TIMESTAMP_HEADER = "X-Timestamp"
IDEMPOTENCY_HEADER = "X-Idempotency-Key"

JWT_ALGORITHM = "HS256"


def body_digest(raw_body: str) -> str:
    return hashlib.sha256(raw_body.encode("utf-8")).hexdigest()


def compute_hmac_signature(secret: str, timestamp: str, raw_body: str) -> str:
    """Compute the hex HMAC-SHA256 of "{timestamp}.{raw_body}".

    Args:
        secret: Shared secret for HMAC.
        timestamp: Unix timestamp string sent in X-Timestamp.
        raw_body: Exact request body.

    Returns:
        Lowercase hex digest.
    """
    return hmac.new(
        key=secret.encode("utf-8"),
        msg=f"{timestamp}.{raw_body}".encode("utf-8"),
        digestmod=hashlib.sha256,
    ).hexdigest()


def compute_jwt_signature(secret: str, timestamp: str, raw_body: str) -> str:
    claims = {
        "iat": int(timestamp),
        "body_sha256": body_digest(raw_body),
    }
    return jwt.encode(claims, secret, algorithm=JWT_ALGORITHM)


def sign(
    secret: str | None,
    signature_mode: SignatureMode,
    timestamp: str,
    raw_body: str,
) -> str | None:
    """Compute the X-Signature header value for a payload.

    Args:
        secret: Shared secret; required unless signature_mode is NONE.
        signature_mode: Signing scheme.
        timestamp: Unix timestamp string.
        raw_body: Exact request body.

    Returns:
        Header value, or None when signature_mode is NONE.

    Raises:
        ConfigurationError: If signing is required but no secret is set.
    """
    if signature_mode is SignatureMode.NONE:
        return None
    if not secret:
        raise ConfigurationError(
            f"signature mode {signature_mode.value} requires a non-empty secret"
        )
    if signature_mode is SignatureMode.HMAC_SHA256:
        return compute_hmac_signature(secret, timestamp, raw_body)
    if signature_mode is SignatureMode.JWT:
        return compute_jwt_signature(secret, timestamp, raw_body)
    raise ConfigurationError(f"unsupported signature mode: {signature_mode!r}")


def check_signing_config(subscription: Subscription) -> None:
    """Raise ConfigurationError if the subscription cannot be signed for."""
    if subscription.signature_mode is not SignatureMode.NONE and not subscription.secret:
        raise ConfigurationError(
            f"subscription {subscription.id} uses {subscription.signature_mode.value} "
            "but has no secret"
        )


def signature_headers(subscription: Subscription, timestamp: str, raw_body: str) -> dict[str, str]:
    """Headers carrying the timestamp and, when signing, the signature."""
    headers = {TIMESTAMP_HEADER: timestamp}
    signature = sign(subscription.secret, subscription.signature_mode, timestamp, raw_body)
    if signature is not None:
        headers[SIGNATURE_HEADER] = signature
    return headers


def verify_hmac_signature(secret: str, timestamp: str, raw_body: str, signature: str) -> bool:
    """Receiver-side check of an hmac-sha256 signature, in constant time."""
    expected = compute_hmac_signature(secret, timestamp, raw_body)
    return hmac.compare_digest(expected, signature)


def verify_jwt_signature(secret: str, raw_body: str, token: str) -> bool:
    """Receiver-side check of a jwt signature.

    The token must be validly signed and its body hash must match.
    Freshness of ``iat`` is left to the receiver's replay policy.
    """
    try:
        claims = jwt.decode(
            token,
            secret,
            algorithms=[JWT_ALGORITHM],
            options={"require": ["iat", "body_sha256"]},
        )
    except jwt.InvalidTokenError:
        return False
    return hmac.compare_digest(str(claims["body_sha256"]), body_digest(raw_body))
