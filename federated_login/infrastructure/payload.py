"""
Access-token payload builder.
"""

import uuid
from typing import Any

from federated_login.core.domain import UserAccount
from federated_login.core.ports import IdentityStore


class RolePayloadBuilder:
    """
    Builds access-token claims from the account, its roles and capabilities.

    Produces ``sub``, ``email``, ``locale``, ``roles`` and ``capabilities``
    (slugs of each) and a unique ``jti`` per token.
    """

    async def build(self, store: IdentityStore, account: UserAccount) -> dict[str, Any]:
        return {
            "sub": str(account.id),
            "email": account.email,
            "locale": account.locale,
            "roles": await store.get_role_slugs(account.id),
            "capabilities": await store.get_capability_slugs(account.id),
            "jti": str(uuid.uuid4()),
        }
