"""
Core service orchestrating the federated login flow.

The callback walks a fixed sequence of states:

    START -> CONFIG_RESOLVED -> TOKEN_EXCHANGED -> USER_INFO_FETCHED
          -> IDENTITY_RESOLVED -> TOKENS_ISSUED

Any step may fail; the failure is logged with the state reached and
re-raised as-is for the HTTP layer to render. Identity resolution and
token issuance share one store transaction, so a failure there leaves no
partially created account, link or refresh record behind.
"""

import logging
import secrets
from datetime import datetime, timedelta
from enum import Enum
from typing import Callable
from urllib.parse import urlencode

from federated_login.core.domain import ProviderConfig, ProviderSummary, TokenPair
from federated_login.core.exceptions import (
    DuplicateRecordError,
    InvalidOAuthState,
    MissingAuthorizationCode,
    MissingOAuthState,
    OAuthFlowError,
    ProviderNotAvailable,
    StoreUnavailable,
)
from federated_login.core.identity import IdentityResolver
from federated_login.core.ports import (
    LoginStore,
    ProviderConfigStore,
    SecretResolver,
    TokenExchangeClient,
)
from federated_login.core.tokens import SessionTokenIssuer, token_digest, utc_now


logger = logging.getLogger(__name__)

# OAuth state tokens are single-use and expire after 10 minutes
STATE_TTL = timedelta(minutes=10)

# A unique-constraint race is resolved by one re-read pass; a second
# conflict is reported as StoreUnavailable
MAX_RESOLVE_ATTEMPTS = 2


class FlowState(str, Enum):
    """Progress of a single login/callback request."""

    START = "start"
    CONFIG_RESOLVED = "config_resolved"
    TOKEN_EXCHANGED = "token_exchanged"
    USER_INFO_FETCHED = "user_info_fetched"
    IDENTITY_RESOLVED = "identity_resolved"
    TOKENS_ISSUED = "tokens_issued"


class OAuthFlowService:
    """
    Orchestrates provider lookup, code exchange, identity resolution and
    token issuance for the login and callback entry points.
    """

    def __init__(
        self,
        provider_store: ProviderConfigStore,
        login_store: LoginStore,
        exchange_client: TokenExchangeClient,
        resolver: IdentityResolver,
        issuer: SessionTokenIssuer,
        secret_resolver: SecretResolver,
        state_check: bool = False,
        clock: Callable[[], datetime] = utc_now,
    ):
        self._provider_store = provider_store
        self._login_store = login_store
        self._exchange_client = exchange_client
        self._resolver = resolver
        self._issuer = issuer
        self._secret_resolver = secret_resolver
        self._state_check = state_check
        self._clock = clock

    async def list_providers(self) -> list[ProviderSummary]:
        return await self._provider_store.list_active_providers()

    async def build_login_url(self, provider_slug: str) -> str:
        """
        Build the provider authorization URL for the login redirect.

        Scopes are space-joined in configured order. Provider-specific
        extra parameters are applied last and may override the defaults.

        Raises:
            ProviderNotAvailable: If the provider is unknown or inactive
        """
        config = await self._require_config(provider_slug)

        params = {
            "client_id": self._secret_resolver.resolve(config.client_id_ref),
            "redirect_uri": config.redirect_uri,
            "response_type": "code",
            "scope": " ".join(config.scopes),
        }
        if self._state_check:
            state = secrets.token_hex(32)
            await self._login_store.save_state(
                token_digest(state), provider_slug, self._clock() + STATE_TTL
            )
            params["state"] = state
        params.update(config.extra_auth_params)

        separator = "&" if "?" in config.auth_url else "?"
        logger.info(f"Starting OAuth login for provider: {provider_slug}")
        return f"{config.auth_url}{separator}{urlencode(params)}"

    async def handle_callback(
        self, provider_slug: str, code: str | None, state: str | None = None
    ) -> TokenPair:
        """
        Complete a login from the provider callback.

        Args:
            provider_slug: Provider from the callback path
            code: Authorization code from the query string
            state: CSRF state, required only when state checking is enabled

        Returns:
            Newly issued first-party token pair

        Raises:
            OAuthFlowError: Subclass describing the failed step
        """
        flow = FlowState.START
        log_extra = {"provider": provider_slug}

        try:
            if not code:
                raise MissingAuthorizationCode()
            if self._state_check:
                await self._consume_state(provider_slug, state)

            config = await self._require_config(provider_slug)
            flow = FlowState.CONFIG_RESOLVED

            access_token = await self._exchange_client.exchange_code(config, code)
            flow = FlowState.TOKEN_EXCHANGED

            user_info = await self._exchange_client.fetch_user_info(config, access_token)
            flow = FlowState.USER_INFO_FETCHED

            for attempt in range(1, MAX_RESOLVE_ATTEMPTS + 1):
                try:
                    async with self._login_store.transaction() as store:
                        account = await self._resolver.resolve(
                            store, config.slug, user_info
                        )
                        flow = FlowState.IDENTITY_RESOLVED
                        tokens = await self._issuer.issue(store, account)
                    break
                except DuplicateRecordError as e:
                    if attempt == MAX_RESOLVE_ATTEMPTS:
                        raise StoreUnavailable(detail=str(e)) from e
                    flow = FlowState.USER_INFO_FETCHED
                    logger.info(
                        "Identity was created concurrently, resolving again",
                        extra=log_extra,
                    )
            flow = FlowState.TOKENS_ISSUED

        except OAuthFlowError as e:
            logger.warning(
                f"OAuth callback failed after state '{flow.value}': {e.message}",
                extra={**log_extra, "flow_state": flow.value, "detail": e.detail},
            )
            raise

        logger.info("OAuth callback completed", extra={**log_extra, "flow_state": flow.value})
        return tokens

    async def _require_config(self, provider_slug: str) -> ProviderConfig:
        config = await self._provider_store.get_active_config(provider_slug)
        if config is None:
            raise ProviderNotAvailable(detail=f"no active provider '{provider_slug}'")
        return config

    async def _consume_state(self, provider_slug: str, state: str | None) -> None:
        if not state:
            raise MissingOAuthState()
        if not await self._login_store.consume_state(
            token_digest(state), provider_slug, self._clock()
        ):
            raise InvalidOAuthState()
