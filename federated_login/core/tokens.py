"""
First-party session tokens.

SessionTokenIssuer mints the access/refresh JWT pair for a resolved
account and records the refresh token; TokenSweeper purges expired
refresh, revoked and state records.
"""

import hashlib
import logging
import uuid
from datetime import UTC, datetime, timedelta
from typing import Callable

from jose import jwt

from federated_login.core.domain import TokenPair, UserAccount
from federated_login.core.ports import IdentityStore, LoginStore, PayloadBuilder


logger = logging.getLogger(__name__)

# Lifetime of the stored refresh record. Deliberately independent of the
# signed refresh expiry (JWT_REFRESH_EXPIRES_IN).
REFRESH_RECORD_TTL = timedelta(days=7)


def utc_now() -> datetime:
    return datetime.now(UTC)


def token_digest(token: str) -> str:
    """SHA-256 hex digest under which refresh tokens are stored."""
    return hashlib.sha256(token.encode()).hexdigest()


class SessionTokenIssuer:
    """Signs access/refresh tokens and persists the refresh record."""

    def __init__(
        self,
        payload_builder: PayloadBuilder,
        access_secret: str,
        refresh_secret: str,
        access_expires_in: timedelta,
        refresh_expires_in: timedelta,
        algorithm: str = "HS256",
        clock: Callable[[], datetime] = utc_now,
    ):
        self._payload_builder = payload_builder
        self._access_secret = access_secret
        self._refresh_secret = refresh_secret
        self._access_expires_in = access_expires_in
        self._refresh_expires_in = refresh_expires_in
        self._algorithm = algorithm
        self._clock = clock

    async def issue(self, store: IdentityStore, account: UserAccount) -> TokenPair:
        """
        Issue a token pair for an account.

        Inserts one refresh-token row per call; repeated logins of the same
        user accumulate rows (one per session).

        Args:
            store: Transaction-scoped identity store
            account: Authenticated account

        Returns:
            Signed access and refresh tokens
        """
        now = self._clock()
        subject = str(account.id)

        claims = await self._payload_builder.build(store, account)
        access_claims = {
            **claims,
            "sub": subject,
            "iat": now,
            "exp": now + self._access_expires_in,
        }
        refresh_claims = {
            "sub": subject,
            "jti": uuid.uuid4().hex,
            "iat": now,
            "exp": now + self._refresh_expires_in,
        }

        access_token = jwt.encode(
            access_claims, self._access_secret, algorithm=self._algorithm
        )
        refresh_token = jwt.encode(
            refresh_claims, self._refresh_secret, algorithm=self._algorithm
        )

        await store.add_refresh_token(
            account.id, token_digest(refresh_token), now + REFRESH_RECORD_TTL
        )
        logger.info(f"Issued session tokens for user {account.id}", extra={"user_id": account.id})

        return TokenPair(access_token=access_token, refresh_token=refresh_token)


class TokenSweeper:
    """
    Opportunistic cleanup of expired token records.

    Runs after login responses; its failures are logged and never reach
    the request that triggered it.
    """

    def __init__(self, store: LoginStore, clock: Callable[[], datetime] = utc_now):
        self._store = store
        self._clock = clock

    async def sweep(self) -> None:
        try:
            deleted = await self._store.purge_expired_tokens(self._clock())
        except Exception as e:
            logger.error(f"Expired token sweep failed: {e}", exc_info=True)
            return

        if any(deleted.values()):
            logger.info(f"Swept expired token records: {deleted}")
