"""
Token exchange client for OAuth2 providers.

Uses authlib's httpx integration for the authorization-code exchange and
for the bearer-authenticated user-info request. Every provider call is
bounded by a timeout; nothing is retried.
"""

import logging

import httpx
from authlib.integrations.httpx_client import AsyncOAuth2Client, OAuthError

from federated_login.core.domain import ProviderConfig, UserInfo
from federated_login.core.exceptions import TokenExchangeFailed, UserInfoFetchFailed
from federated_login.core.ports import SecretResolver


logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = 10.0


class AuthlibTokenExchangeClient:
    """TokenExchangeClient backed by authlib's AsyncOAuth2Client."""

    def __init__(
        self,
        secret_resolver: SecretResolver,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
    ):
        self._secret_resolver = secret_resolver
        self._timeout = timeout

    async def exchange_code(self, config: ProviderConfig, code: str) -> str:
        """
        Exchange an authorization code at the provider's token endpoint.

        Sends a form-encoded POST carrying client id/secret, redirect URI,
        code and ``grant_type=authorization_code``.

        Args:
            config: Active provider configuration
            code: Authorization code from the callback

        Returns:
            The provider access token

        Raises:
            TokenExchangeFailed: If the request fails or no token is returned
        """
        client = AsyncOAuth2Client(
            client_id=self._secret_resolver.resolve(config.client_id_ref),
            client_secret=self._secret_resolver.resolve(config.client_secret_ref),
            token_endpoint_auth_method="client_secret_post",
            redirect_uri=config.redirect_uri,
            timeout=self._timeout,
        )

        try:
            async with client:
                token = await client.fetch_token(
                    config.token_url,
                    grant_type="authorization_code",
                    code=code,
                    redirect_uri=config.redirect_uri,
                )
        except OAuthError as e:
            logger.error(
                f"Provider rejected authorization code: {e.error}",
                extra={"provider": config.slug, "error": e.description},
            )
            raise TokenExchangeFailed(detail=str(e)) from e
        except httpx.HTTPError as e:
            logger.error(
                f"Token request to {config.slug} failed: {e}",
                extra={"provider": config.slug},
            )
            raise TokenExchangeFailed(detail=str(e)) from e
        except ValueError as e:
            # Non-JSON token response
            logger.error(
                f"Unreadable token response from {config.slug}: {e}",
                extra={"provider": config.slug},
            )
            raise TokenExchangeFailed(detail=str(e)) from e

        access_token = token.get("access_token") if token else None
        if not access_token:
            logger.error(
                f"Token response from {config.slug} has no access_token",
                extra={"provider": config.slug},
            )
            raise TokenExchangeFailed(detail="no access_token in token response")

        logger.info(f"Exchanged authorization code with {config.slug}")
        return str(access_token)

    async def fetch_user_info(
        self, config: ProviderConfig, access_token: str
    ) -> UserInfo:
        """
        Fetch the provider user-info resource.

        Args:
            config: Active provider configuration
            access_token: Provider access token from exchange_code

        Returns:
            Parsed user identity

        Raises:
            UserInfoFetchFailed: On network, HTTP or decoding errors
            InvalidIdentity: If the payload has neither ``sub`` nor ``id``
        """
        client = AsyncOAuth2Client(
            token={"access_token": access_token, "token_type": "Bearer"},
            timeout=self._timeout,
        )

        try:
            async with client:
                response = await client.get(
                    config.user_info_url, headers={"Accept": "application/json"}
                )
                response.raise_for_status()
                payload = response.json()
        except httpx.HTTPStatusError as e:
            logger.error(
                f"User info request to {config.slug} failed: "
                f"{e.response.status_code} {e.response.text}",
                extra={"provider": config.slug},
            )
            raise UserInfoFetchFailed(detail=str(e)) from e
        except httpx.RequestError as e:
            logger.error(
                f"Network error fetching user info from {config.slug}: {e}",
                extra={"provider": config.slug},
            )
            raise UserInfoFetchFailed(detail=str(e)) from e
        except ValueError as e:
            raise UserInfoFetchFailed(detail=f"invalid JSON: {e}") from e

        if not isinstance(payload, dict):
            raise UserInfoFetchFailed(detail="user info response is not an object")

        return UserInfo.from_payload(payload)
