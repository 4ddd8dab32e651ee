"""
Token service and password hashing.

Tokens are HS256 JWTs carrying {userId, username, role} plus a `type` claim
so access and refresh tokens cannot stand in for each other. There is no
server-side token store: validity is signature + expiry only.
"""
import time
from datetime import timedelta
from functools import lru_cache
from typing import Any, Callable, Dict, Mapping, Optional

from jose import JWTError, jwt
from passlib.context import CryptContext

from src.reports_api.config import get_settings
from src.reports_api.logging_config import get_logger

logger = get_logger(__name__)

ACCESS = "access"
REFRESH = "refresh"

CLAIM_KEYS = ("userId", "username", "role")


class InvalidToken(Exception):
    """Token is expired, tampered, signed with another secret, malformed or of the wrong kind."""


class TokenService:
    """Issues and verifies signed, expiring bearer tokens."""

    def __init__(
        self,
        secret: str,
        algorithm: str = "HS256",
        access_ttl: timedelta = timedelta(hours=24),
        refresh_ttl: timedelta = timedelta(days=7),
        clock: Callable[[], float] = time.time,
    ) -> None:
        if not secret:
            raise ValueError("A signing secret is required")
        self._secret = secret
        self._algorithm = algorithm
        self.access_ttl = access_ttl
        self.refresh_ttl = refresh_ttl
        self._clock = clock

    def _issue(self, claims: Mapping[str, Any], kind: str, ttl: timedelta) -> str:
        now = int(self._clock())
        payload = {key: claims.get(key) for key in CLAIM_KEYS}
        payload.update(
            {
                "sub": str(claims.get("userId")),
                "type": kind,
                "iat": now,
                "exp": now + int(ttl.total_seconds()),
            }
        )
        return jwt.encode(payload, self._secret, algorithm=self._algorithm)

    # PUBLIC_INTERFACE
    def issue_access(self, claims: Mapping[str, Any], ttl: Optional[timedelta] = None) -> str:
        """Create a short-lived access token."""
        return self._issue(claims, ACCESS, self.access_ttl if ttl is None else ttl)

    # PUBLIC_INTERFACE
    def issue_refresh(self, claims: Mapping[str, Any], ttl: Optional[timedelta] = None) -> str:
        """Create a long-lived refresh token."""
        return self._issue(claims, REFRESH, self.refresh_ttl if ttl is None else ttl)

    # PUBLIC_INTERFACE
    def verify(self, token: str, kind: str = ACCESS) -> Dict[str, Any]:
        """
        Return the identity claims of a valid token.

        Every failure raises the same InvalidToken; the reason is only logged.
        """
        try:
            # Expiry is checked below against the injected clock.
            payload = jwt.decode(
                token,
                self._secret,
                algorithms=[self._algorithm],
                options={"verify_exp": False, "verify_iat": False},
            )
        except JWTError as exc:
            logger.debug("Token rejected: %s", exc)
            raise InvalidToken() from exc

        exp = payload.get("exp")
        if not isinstance(exp, (int, float)) or self._clock() >= exp:
            logger.debug("Token rejected: expired")
            raise InvalidToken()
        if payload.get("type") != kind:
            logger.debug("Token rejected: expected %s token, got %s", kind, payload.get("type"))
            raise InvalidToken()

        return {key: payload.get(key) for key in CLAIM_KEYS}


@lru_cache(maxsize=1)
def get_token_service() -> TokenService:
    """Token service configured from process settings."""
    settings = get_settings()
    return TokenService(
        settings.jwt_secret,
        algorithm=settings.jwt_algorithm,
        access_ttl=timedelta(minutes=settings.jwt_access_expires_minutes),
        refresh_ttl=timedelta(days=settings.jwt_refresh_expires_days),
    )


@lru_cache(maxsize=1)
def _pwd_context() -> CryptContext:
    return CryptContext(
        schemes=["bcrypt"],
        deprecated="auto",
        bcrypt__rounds=get_settings().bcrypt_rounds,
    )


# PUBLIC_INTERFACE
def hash_password(password: str) -> str:
    """Hash a plaintext password."""
    return _pwd_context().hash(password)


# PUBLIC_INTERFACE
def verify_password(password: str, password_hash: Optional[str]) -> bool:
    """Verify a plaintext password against a stored hash in constant time."""
    if not password_hash:
        _pwd_context().dummy_verify()
        return False
    try:
        return _pwd_context().verify(password, password_hash)
    except ValueError:
        # Stored value is not a recognised hash (e.g. a legacy plaintext row).
        logger.warning("Stored password is not a valid hash; rejecting login")
        return False


# PUBLIC_INTERFACE
def dummy_verify() -> None:
    """Spend the same time as a real verification, for unknown usernames."""
    _pwd_context().dummy_verify()
