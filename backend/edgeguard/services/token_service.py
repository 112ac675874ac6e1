"""
EdgeGuard — Signed Token Verification
======================================

What:  Turns a raw bearer/cookie token into verified Claims.
How:   PyJWT, restricted to the HMAC family and the configured secret.
Who:   TokenAuthMiddleware calls verify() once per protected request.

Check order (first failure wins, one reason per rejection):
    1. malformed  header/payload cannot be decoded, or `sub`/`exp` missing
                  (a non-finite `exp` counts as missing)
    2. expired    `exp` is in the past (minus the configured leeway)
    3. invalid    algorithm outside the allowed set, bad signature,
                  issuer mismatch, or any other verification failure

Expiry is checked on the unverified payload before the signature, so an
expired token is reported as expired even when it was also forged. This
never admits anything; it only chooses which 401 message is returned.

Timestamps beyond what datetime can hold (e.g. the "never expires" value
253402300800) are valid; Claims clamps them to datetime.max.
"""

import logging
import math
import time
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Iterable, List, Optional

import jwt

from edgeguard.config import MAC_ALGORITHMS, Settings
from edgeguard.exceptions import ClientCredentialError
from edgeguard.schemas.auth import Claims

logger = logging.getLogger(__name__)


def _is_number(value: Any) -> bool:
    return (
        isinstance(value, (int, float))
        and not isinstance(value, bool)
        and (isinstance(value, int) or math.isfinite(value))
    )


def _as_utc(timestamp: float) -> datetime:
    """Epoch seconds to an aware datetime, clamped to the representable range."""
    try:
        return datetime.fromtimestamp(timestamp, tz=timezone.utc)
    except (OverflowError, ValueError, OSError):
        bound = datetime.max if timestamp > 0 else datetime.min
        return bound.replace(tzinfo=timezone.utc)


class TokenVerifier:
    def __init__(
        self,
        secret: str,
        algorithms: Iterable[str] = ("HS256",),
        issuer: Optional[str] = None,
        leeway: int = 0,
        clock: Callable[[], float] = time.time,
    ):
        self._secret = secret
        self.algorithms: List[str] = [a.upper() for a in algorithms]
        unsupported = [a for a in self.algorithms if a not in MAC_ALGORITHMS]
        if unsupported:
            raise ValueError(f"Unsupported token algorithm(s): {unsupported}")
        self.issuer = issuer
        self.leeway = leeway
        self._clock = clock

    @classmethod
    def from_settings(cls, settings: Settings) -> "TokenVerifier":
        return cls(
            secret=settings.app_secret,
            algorithms=settings.token_algorithms_list,
            issuer=settings.token_issuer,
            leeway=settings.token_leeway_seconds,
        )

    def _unverified(self, token: str) -> Dict[str, Any]:
        try:
            header = jwt.get_unverified_header(token)
            payload = jwt.decode(token, options={"verify_signature": False})
        except jwt.DecodeError as e:
            raise ClientCredentialError(
                ClientCredentialError.MALFORMED, context={"error": str(e)}
            ) from e

        if not isinstance(payload, dict):
            raise ClientCredentialError(ClientCredentialError.MALFORMED)

        subject = payload.get("sub")
        if not isinstance(subject, str) or not subject:
            raise ClientCredentialError(
                ClientCredentialError.MALFORMED, context={"error": "missing sub claim"}
            )
        if not _is_number(payload.get("exp")):
            raise ClientCredentialError(
                ClientCredentialError.MALFORMED, context={"error": "missing exp claim"}
            )

        payload["_alg"] = header.get("alg")
        return payload

    def verify(self, token: str) -> Claims:
        """
        Verify a token and return its claims.

        Raises:
            ClientCredentialError: with reason malformed, expired or invalid.
        """
        if not token:
            raise ClientCredentialError(ClientCredentialError.MISSING)

        unverified = self._unverified(token)

        if unverified["exp"] <= self._clock() - self.leeway:
            raise ClientCredentialError(ClientCredentialError.EXPIRED)

        alg = unverified.pop("_alg")
        if alg not in self.algorithms:
            raise ClientCredentialError(
                ClientCredentialError.INVALID, context={"error": f"algorithm {alg!r} not allowed"}
            )

        required = ["exp", "sub"]
        if self.issuer is not None:
            required.append("iss")

        try:
            payload = jwt.decode(
                token,
                self._secret,
                algorithms=self.algorithms,
                issuer=self.issuer,
                leeway=self.leeway,
                options={"require": required},
            )
        except jwt.ExpiredSignatureError as e:
            raise ClientCredentialError(ClientCredentialError.EXPIRED) from e
        except jwt.InvalidSignatureError as e:
            raise ClientCredentialError(
                ClientCredentialError.INVALID, context={"error": "signature mismatch"}
            ) from e
        except jwt.DecodeError as e:
            raise ClientCredentialError(
                ClientCredentialError.MALFORMED, context={"error": str(e)}
            ) from e
        except jwt.InvalidTokenError as e:
            raise ClientCredentialError(
                ClientCredentialError.INVALID, context={"error": str(e)}
            ) from e

        iat = payload.get("iat")
        return Claims(
            subject=payload["sub"],
            expires_at=_as_utc(payload["exp"]),
            issued_at=_as_utc(iat) if _is_number(iat) else None,
            issuer=payload.get("iss"),
        )
