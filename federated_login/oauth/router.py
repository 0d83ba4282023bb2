"""
OAuth2 federated login endpoints.

- GET /oauth/providers - List active providers
- GET /oauth/{provider}/login - Redirect to the provider's authorization page
- GET|POST /oauth/{provider}/callback - Exchange the code, sign in, issue tokens

Flow failures raise OAuthFlowError subclasses, rendered as plain text by
the exception handler in main.py.
"""

from typing import Annotated

from fastapi import APIRouter, BackgroundTasks, Query, status
from fastapi.responses import JSONResponse, RedirectResponse

from federated_login.oauth.dependencies import FlowService, Sweeper


router = APIRouter(prefix="/oauth", tags=["oauth"])


@router.get("/providers")
async def list_providers(service: FlowService):
    """
    List active OAuth providers for display on the login page.

    Returns:
        List of {name, slug} ordered by name
    """
    providers = await service.list_providers()
    return [provider.model_dump() for provider in providers]


@router.get("/{provider}/login")
async def login(provider: str, service: FlowService):
    """
    Start the OAuth2 authorization flow.

    Args:
        provider: Provider slug from the path

    Returns:
        302 redirect to the provider's authorization endpoint
    """
    url = await service.build_login_url(provider)
    return RedirectResponse(url=url, status_code=status.HTTP_302_FOUND)


@router.api_route("/{provider}/callback", methods=["GET", "POST"])
async def callback(
    provider: str,
    background_tasks: BackgroundTasks,
    service: FlowService,
    sweeper: Sweeper,
    code: Annotated[str | None, Query(description="Authorization code")] = None,
    state: Annotated[str | None, Query(description="CSRF state")] = None,
):
    """
    Handle the OAuth2 callback from the provider.

    Exchanges the code, resolves or registers the local account and
    issues first-party tokens. Expired token records are swept after the
    response is sent.

    Args:
        provider: Provider slug from the path
        code: Authorization code from the query string
        state: CSRF state, checked when OAUTH_STATE_CHECK is enabled

    Returns:
        JSON {accessToken, refreshToken}
    """
    tokens = await service.handle_callback(provider, code, state)

    background_tasks.add_task(sweeper.sweep)

    return JSONResponse(content=tokens.to_response(), status_code=status.HTTP_200_OK)
