from __future__ import annotations

import logging
import secrets
from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING

import jwt

from .errors import AuthFailureError

if TYPE_CHECKING:
    from collections.abc import Iterable

LOG = logging.getLogger("media_range.tokens")

ALGORITHM = "HS256"
KEY_CLAIM = "key"


class AccessTokenSigner:
    """Issues and validates HMAC-signed, time-limited references to a key."""

    def __init__(self, secret: str | None = None, *, ttl: int = 600) -> None:
        if ttl <= 0:
            msg = "ttl must be positive"
            raise ValueError(msg)
        # Without a configured secret, tokens only survive this process.
        self._secret = secret or secrets.token_urlsafe(32)
        self.ttl = ttl

    def issue(self, key: str) -> str:
        now = datetime.now(UTC)
        payload = {
            KEY_CLAIM: key,
            "iat": now,
            "exp": now + timedelta(seconds=self.ttl),
        }
        return jwt.encode(payload, self._secret, algorithm=ALGORITHM)

    def issue_many(self, keys: Iterable[str]) -> dict[str, str]:
        return {key: self.issue(key) for key in keys}

    def validate(self, token: str) -> str:
        """Verify signature and expiry and return the ``key`` claim.

        Raises:
            AuthFailureError: If the token is malformed, forged, expired,
                or does not carry a key.
        """
        try:
            payload = jwt.decode(
                token,
                self._secret,
                algorithms=[ALGORITHM],
                options={"require": ["exp", KEY_CLAIM]},
            )
        except jwt.ExpiredSignatureError as err:
            LOG.debug("rejected expired token")
            msg = "Invalid or expired token"
            raise AuthFailureError(msg) from err
        except jwt.InvalidTokenError as err:
            LOG.debug("rejected token: %s", err)
            msg = "Invalid or expired token"
            raise AuthFailureError(msg) from err

        key = payload.get(KEY_CLAIM)
        if not isinstance(key, str) or not key:
            msg = "Invalid or expired token"
            raise AuthFailureError(msg)
        return key
