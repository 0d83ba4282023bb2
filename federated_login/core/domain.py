"""
Core domain models for federated login.

These models represent providers, local accounts and their external
identity links, independent of how they are persisted or transported.
"""

from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from federated_login.core.exceptions import InvalidIdentity


class ProviderConfig(BaseModel):
    """
    OAuth endpoint configuration for one provider.

    Client credentials are stored by reference: ``client_id_ref`` and
    ``client_secret_ref`` name environment variables, resolved at call time.
    """

    slug: str = Field(description="Provider slug used in URLs (google, github)")
    name: str | None = Field(default=None, description="Display name")
    active: bool = Field(default=False)
    auth_url: str = Field(description="Authorization endpoint")
    token_url: str = Field(description="Access token endpoint")
    user_info_url: str = Field(description="User info endpoint")
    client_id_ref: str = Field(description="Env var holding the client id")
    client_secret_ref: str = Field(description="Env var holding the client secret")
    redirect_uri: str
    scopes: list[str] = Field(default_factory=list)
    extra_auth_params: dict[str, str] = Field(default_factory=dict)

    model_config = ConfigDict(frozen=True)


class ProviderSummary(BaseModel):
    """Public view of an active provider for login pages."""

    name: str | None
    slug: str


class UserAccount(BaseModel):
    """Local user account."""

    id: int
    email: str | None = None
    username: str | None = None
    password_hash: str | None = Field(default=None, exclude=True)
    locale: str | None = None


class UserProviderLink(BaseModel):
    """Binding of an external provider identity to a local account."""

    provider_slug: str
    provider_subject_id: str
    user_id: int


class UserInfo(BaseModel):
    """
    Identity returned by a provider's user-info endpoint.

    Only the stable subject identifier and email are interpreted; the
    full payload is kept for payload builders that need more.
    """

    subject_id: str = Field(description="Provider-stable user id (sub, else id)")
    email: str | None = None
    raw: dict[str, Any] = Field(default_factory=dict, exclude=True)

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> "UserInfo":
        """
        Build UserInfo from a raw provider payload.

        ``sub`` wins over ``id``. Numeric ids (GitHub) are stringified.

        Raises:
            InvalidIdentity: If neither ``sub`` nor ``id`` is present
        """
        subject = payload.get("sub")
        if subject is None or subject == "":
            subject = payload.get("id")
        if subject is None or subject == "":
            raise InvalidIdentity(detail="user info has neither 'sub' nor 'id'")

        email = payload.get("email")
        return cls(
            subject_id=str(subject),
            email=email if isinstance(email, str) and email else None,
            raw=payload,
        )


class TokenPair(BaseModel):
    """First-party credentials issued after a successful login."""

    access_token: str
    refresh_token: str

    def to_response(self) -> dict[str, str]:
        """Render with the camelCase keys of the HTTP contract."""
        return {"accessToken": self.access_token, "refreshToken": self.refresh_token}
