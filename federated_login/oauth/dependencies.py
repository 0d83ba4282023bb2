"""
FastAPI dependencies for OAuth endpoints.

Wires the core flow services with their infrastructure adapters. The
store is a lazily created singleton; everything else is cheap to build
per request.
"""

import logging
from typing import Annotated

from fastapi import Depends

from federated_login.core.identity import IdentityResolver, RegistrationPolicy
from federated_login.core.ports import PasswordHasher, SecretResolver, TokenExchangeClient
from federated_login.core.services import OAuthFlowService
from federated_login.core.tokens import SessionTokenIssuer, TokenSweeper
from federated_login.infrastructure.oauth_client import AuthlibTokenExchangeClient
from federated_login.infrastructure.passwords import BcryptPasswordHasher
from federated_login.infrastructure.payload import RolePayloadBuilder
from federated_login.infrastructure.secret_resolver import EnvSecretResolver
from federated_login.infrastructure.sql_store import SqlStore
from federated_login.oauth.config import OAuthSettings, get_oauth_settings


logger = logging.getLogger(__name__)

# Singleton store for dependency injection
_store: SqlStore | None = None


def get_store() -> SqlStore:
    """
    Get the store singleton.

    Created on first access from DATABASE_URL and TABLE_PREFIX.
    Can be replaced via set_store for testing.
    """
    global _store
    if _store is None:
        settings = get_oauth_settings()
        _store = SqlStore.from_url(settings.database_url, settings.table_prefix)
        logger.info(f"Using store with table prefix '{settings.table_prefix}'")
    return _store


def set_store(store: SqlStore) -> None:
    """Set the store implementation."""
    global _store
    _store = store


def reset_store() -> None:
    """
    Reset the store singleton.

    Useful for testing to ensure clean state between tests.
    """
    global _store
    _store = None


def get_secret_resolver() -> SecretResolver:
    """Provide the secret resolver dependency."""
    return EnvSecretResolver()


def get_password_hasher() -> PasswordHasher:
    """Provide the password hasher dependency."""
    return BcryptPasswordHasher()


def get_exchange_client(
    settings: Annotated[OAuthSettings, Depends(get_oauth_settings)],
    secret_resolver: Annotated[SecretResolver, Depends(get_secret_resolver)],
) -> TokenExchangeClient:
    """Provide the provider token exchange client."""
    return AuthlibTokenExchangeClient(secret_resolver, timeout=settings.http_timeout)


def get_flow_service(
    settings: Annotated[OAuthSettings, Depends(get_oauth_settings)],
    store: Annotated[SqlStore, Depends(get_store)],
    exchange_client: Annotated[TokenExchangeClient, Depends(get_exchange_client)],
    secret_resolver: Annotated[SecretResolver, Depends(get_secret_resolver)],
    password_hasher: Annotated[PasswordHasher, Depends(get_password_hasher)],
) -> OAuthFlowService:
    """
    Provide the OAuth flow service.

    This is where the core services are wired with their adapters.
    """
    policy = RegistrationPolicy(
        allow_registrations_default=settings.allow_registrations,
        default_roles=settings.default_roles,
    )
    issuer = SessionTokenIssuer(
        RolePayloadBuilder(),
        access_secret=settings.jwt_secret,
        refresh_secret=settings.jwt_refresh_secret,
        access_expires_in=settings.jwt_expires_in,
        refresh_expires_in=settings.jwt_refresh_expires_in,
        algorithm=settings.jwt_algorithm,
    )
    return OAuthFlowService(
        provider_store=store,
        login_store=store,
        exchange_client=exchange_client,
        resolver=IdentityResolver(policy, password_hasher),
        issuer=issuer,
        secret_resolver=secret_resolver,
        state_check=settings.state_check,
    )


def get_token_sweeper(
    store: Annotated[SqlStore, Depends(get_store)],
) -> TokenSweeper:
    """Provide the expired token sweeper."""
    return TokenSweeper(store)


# Type aliases for cleaner dependency injection
FlowService = Annotated[OAuthFlowService, Depends(get_flow_service)]
Sweeper = Annotated[TokenSweeper, Depends(get_token_sweeper)]
