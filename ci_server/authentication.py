"""Webhook authentication.

Verifies that a request originates from GitHub by checking the
X-Hub-Signature header against an HMAC of the raw request body, keyed
by the shared webhook secret.
"""

from __future__ import annotations

import hashlib
import hmac
import logging
import re
from collections.abc import Mapping

logger = logging.getLogger(__name__)

EVENT_HEADER = "x-github-event"
SIGNATURE_HEADER = "x-hub-signature"

# Signature prefixes and the digest they are computed with
SIGNATURE_ALGORITHMS = {
    "sha1": hashlib.sha1,
}

SIGNATURE_PATTERN = re.compile(r"^[a-zA-Z0-9]{40}$")


class AuthenticationError(Exception):
    """Raised when a webhook signature is missing or does not match."""

    def __init__(self, message: str, code: str = "authentication_failed") -> None:
        super().__init__(message)
        self.code = code


def compute_signature(secret: str | bytes, body: bytes, algorithm: str = "sha1") -> str:
    """Compute the signature header value for a payload.

    Args:
        secret: Shared webhook secret.
        body: Raw request body.
        algorithm: Signature algorithm prefix.

    Returns:
        Header value, e.g. ``sha1=<hex digest>``.
    """
    key = secret.encode() if isinstance(secret, str) else secret
    digest = hmac.new(key, body, SIGNATURE_ALGORITHMS[algorithm]).hexdigest()
    return f"{algorithm}={digest}"


class Authenticator:
    """Validates webhook requests against the shared secret."""

    def __init__(self, secret: str | bytes) -> None:
        self._secret = secret.encode() if isinstance(secret, str) else secret

    def check(self, headers: Mapping[str, str], body: bytes) -> None:
        """Verify the signature of a webhook request.

        Args:
            headers: Request headers. Keys are matched case-insensitively.
            body: Raw request body the signature was computed over.

        Raises:
            AuthenticationError: If a header is missing or the signature is wrong.
        """
        lowered = {key.lower(): value for key, value in headers.items()}
        if EVENT_HEADER not in lowered or SIGNATURE_HEADER not in lowered:
            raise AuthenticationError("Missing event or signature header")

        algorithm, _, signature = lowered[SIGNATURE_HEADER].partition("=")
        digest = SIGNATURE_ALGORITHMS.get(algorithm.lower())
        if digest is None:
            raise AuthenticationError(f"Unsupported signature algorithm: {algorithm}")

        if not SIGNATURE_PATTERN.match(signature):
            raise AuthenticationError("Malformed signature")

        expected = hmac.new(self._secret, body, digest).hexdigest()
        if not hmac.compare_digest(expected.encode(), signature.encode()):
            raise AuthenticationError("Signature mismatch")

    def verify(self, headers: Mapping[str, str], body: bytes) -> bool:
        """Verify a webhook request.

        Args:
            headers: Request headers.
            body: Raw request body.

        Returns:
            True when verification failed (error), False when authenticated.
        """
        try:
            self.check(headers, body)
        except AuthenticationError as e:
            logger.warning("Rejected webhook: %s", e)
            return True
        return False


__all__ = [
    "EVENT_HEADER",
    "SIGNATURE_HEADER",
    "AuthenticationError",
    "Authenticator",
    "compute_signature",
]
