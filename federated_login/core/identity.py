"""
Identity resolution for federated logins.

Maps a provider identity to a local account: an existing provider link
wins, then an account with the same email is linked, and only then is a
new account registered (when the registration policy allows it).
"""

import json
import logging
import secrets

from federated_login.core.domain import UserAccount, UserInfo
from federated_login.core.exceptions import InvalidIdentity, RegistrationDisabled
from federated_login.core.ports import IdentityStore, PasswordHasher


logger = logging.getLogger(__name__)

ALLOW_REGISTRATIONS_OPTION = "allow_registrations"
DEFAULT_LOCALE = "en"


def parse_option_flag(raw: str | None) -> bool | None:
    """
    Interpret a stored option value as a boolean flag.

    Option values are stored as JSON text. Returns None when the option is
    unset (missing row or JSON null) so callers can apply their fallback.
    """
    if raw is None:
        return None
    try:
        value = json.loads(raw)
    except (TypeError, ValueError):
        return raw.strip().lower() == "true"
    if value is None:
        return None
    if isinstance(value, str):
        return value.strip().lower() == "true"
    return bool(value)


class RegistrationPolicy:
    """
    Decides whether unknown identities may create accounts.

    The runtime option in the store takes precedence; the environment
    toggle is the fallback. The option is read through the caller's
    transaction so resolution never needs a second connection.
    """

    def __init__(
        self,
        allow_registrations_default: bool = False,
        default_roles: list[str] | None = None,
    ):
        self._allow_default = allow_registrations_default
        self.default_roles = default_roles or []

    async def registrations_allowed(self, store: IdentityStore) -> bool:
        flag = parse_option_flag(await store.get_option(ALLOW_REGISTRATIONS_OPTION))
        if flag is None:
            return self._allow_default
        return flag


class IdentityResolver:
    """Resolves provider user info to a local UserAccount."""

    def __init__(self, policy: RegistrationPolicy, password_hasher: PasswordHasher):
        self._policy = policy
        self._password_hasher = password_hasher

    async def resolve(
        self, store: IdentityStore, provider_slug: str, user_info: UserInfo
    ) -> UserAccount:
        """
        Resolve or create the account for a provider identity.

        Email matching is exact and case-sensitive, as stored.

        Args:
            store: Transaction-scoped identity store
            provider_slug: Provider the identity comes from
            user_info: Identity returned by the provider

        Returns:
            The linked, matched or newly created account

        Raises:
            RegistrationDisabled: If a new account is needed but not allowed
            InvalidIdentity: If the identity cannot be matched safely
            DuplicateRecordError: If a concurrent request created the same
                account or link first
        """
        log_extra = {"provider": provider_slug, "subject_id": user_info.subject_id}

        # Returning users: match on the stable subject, never on mutable email
        link = await store.find_link(provider_slug, user_info.subject_id)
        if link is not None:
            account = await store.get_account(link.user_id)
            if account is None:
                raise InvalidIdentity(
                    detail=f"link for {provider_slug}:{user_info.subject_id} "
                    f"points to missing user {link.user_id}"
                )
            logger.info(f"Resolved user {account.id} by provider link", extra=log_extra)
            return account

        if not user_info.email:
            raise InvalidIdentity(detail="user info has no email to match or register")

        account = await store.find_account_by_email(user_info.email)
        if account is None:
            if not await self._policy.registrations_allowed(store):
                logger.info("Registration refused for new identity", extra=log_extra)
                raise RegistrationDisabled()
            account = await self._register(store, user_info.email)
        else:
            logger.info(f"Linking identity to existing user {account.id}", extra=log_extra)

        await store.create_link(provider_slug, user_info.subject_id, account.id)
        return account

    async def _register(self, store: IdentityStore, email: str) -> UserAccount:
        # Federated users never sign in with a password; store an unguessable one
        password_hash = self._password_hasher.hash(secrets.token_hex(16))
        account = await store.create_account(email, password_hash, DEFAULT_LOCALE)
        logger.info(f"Registered new user {account.id}", extra={"user_id": account.id})

        try:
            assigned = await store.assign_roles(account.id, self._policy.default_roles)
        except Exception as e:
            logger.error(
                f"Default role assignment failed for user {account.id}: {e}",
                exc_info=True,
            )
        else:
            missing = set(self._policy.default_roles) - set(assigned)
            if missing:
                logger.warning(
                    f"Default roles not found: {sorted(missing)}",
                    extra={"user_id": account.id},
                )
        return account
