"""
Port definitions (interfaces) for the federated login core.

Ports define the contracts between the flow services and external
systems. Infrastructure adapters implement these ports; the core depends
only on these interfaces.
"""

from datetime import datetime
from typing import Any, AsyncContextManager, Protocol

from federated_login.core.domain import (
    ProviderConfig,
    ProviderSummary,
    UserAccount,
    UserInfo,
    UserProviderLink,
)


class ProviderConfigStore(Protocol):
    """Read-only lookup of provider OAuth configuration."""

    async def get_active_config(self, slug: str) -> ProviderConfig | None:
        """
        Get the configuration of an active provider.

        Returns:
            ProviderConfig if the slug exists and is active, None otherwise
        """
        ...

    async def list_active_providers(self) -> list[ProviderSummary]:
        """List active providers ordered by display name."""
        ...


class IdentityStore(Protocol):
    """
    Account, link and refresh-token persistence within one transaction.

    Instances are obtained from LoginStore.transaction(); every write made
    through one instance commits or rolls back together.
    """

    async def find_link(
        self, provider_slug: str, subject_id: str
    ) -> UserProviderLink | None: ...

    async def get_account(self, user_id: int) -> UserAccount | None: ...

    async def find_account_by_email(self, email: str) -> UserAccount | None: ...

    async def create_account(
        self, email: str, password_hash: str, locale: str
    ) -> UserAccount:
        """
        Insert a new account.

        Raises:
            DuplicateRecordError: If the email is already taken
        """
        ...

    async def create_link(
        self, provider_slug: str, subject_id: str, user_id: int
    ) -> UserProviderLink:
        """
        Insert a provider identity link.

        Raises:
            DuplicateRecordError: If (provider_slug, subject_id) is already linked
        """
        ...

    async def assign_roles(self, user_id: int, role_slugs: list[str]) -> list[str]:
        """
        Assign existing roles by slug. Unknown slugs are skipped.

        Returns:
            Slugs actually assigned
        """
        ...

    async def get_role_slugs(self, user_id: int) -> list[str]: ...

    async def get_capability_slugs(self, user_id: int) -> list[str]: ...

    async def get_option(self, name: str) -> str | None:
        """Get a raw runtime option value by name."""
        ...

    async def add_refresh_token(
        self, user_id: int, token_digest: str, expires_at: datetime
    ) -> None: ...


class LoginStore(Protocol):
    """Store operations used by the flow outside a single identity transaction."""

    def transaction(self) -> AsyncContextManager[IdentityStore]:
        """Open a transaction scoped IdentityStore."""
        ...

    async def purge_expired_tokens(self, now: datetime) -> dict[str, int]:
        """
        Delete refresh, revoked and state rows that expired before ``now``.

        Returns:
            Deleted row counts keyed by table kind
        """
        ...

    async def save_state(
        self, state_hash: str, provider_slug: str, expires_at: datetime
    ) -> None: ...

    async def consume_state(
        self, state_hash: str, provider_slug: str, now: datetime
    ) -> bool:
        """
        Delete an unexpired state row for the provider.

        Returns:
            True if a matching row existed
        """
        ...


class TokenExchangeClient(Protocol):
    """Authorization-code exchange and user-info retrieval."""

    async def exchange_code(self, config: ProviderConfig, code: str) -> str:
        """
        Exchange an authorization code for the provider's access token.

        Raises:
            TokenExchangeFailed: If the provider rejects or returns no token
        """
        ...

    async def fetch_user_info(
        self, config: ProviderConfig, access_token: str
    ) -> UserInfo:
        """
        Fetch the user-info resource with bearer authentication.

        Raises:
            UserInfoFetchFailed: On transport or HTTP errors
            InvalidIdentity: If the payload lacks a subject identifier
        """
        ...


class SecretResolver(Protocol):
    """Resolves a secret reference (e.g. env var name) to its value."""

    def resolve(self, ref: str) -> str: ...


class PasswordHasher(Protocol):
    """Hashes password material for storage."""

    def hash(self, secret: str) -> str: ...


class PayloadBuilder(Protocol):
    """Builds the claims describing an authenticated principal."""

    async def build(
        self, store: IdentityStore, account: UserAccount
    ) -> dict[str, Any]: ...
