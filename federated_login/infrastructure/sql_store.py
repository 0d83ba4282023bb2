"""
SQLAlchemy implementation of the login store ports.

SqlStore implements ProviderConfigStore and LoginStore on an async
engine; SqlIdentityStore implements IdentityStore on a single connection
inside the transaction opened by SqlStore.transaction().
"""

import json
import logging
from contextlib import asynccontextmanager, contextmanager
from datetime import datetime
from typing import Any, AsyncIterator, Iterator

from sqlalchemy import delete, insert, select
from sqlalchemy.exc import IntegrityError, InterfaceError, OperationalError
from sqlalchemy.exc import TimeoutError as PoolTimeoutError
from sqlalchemy.ext.asyncio import AsyncConnection, AsyncEngine

from federated_login.core.domain import (
    ProviderConfig,
    ProviderSummary,
    UserAccount,
    UserProviderLink,
)
from federated_login.core.exceptions import DuplicateRecordError, StoreUnavailable
from federated_login.infrastructure.database import (
    Tables,
    create_engine,
    define_tables,
    make_table_resolver,
)


logger = logging.getLogger(__name__)


@contextmanager
def _translate_errors() -> Iterator[None]:
    """Map connectivity failures to StoreUnavailable."""
    try:
        yield
    except (OperationalError, InterfaceError, PoolTimeoutError) as e:
        logger.error(f"Database unavailable: {e}")
        raise StoreUnavailable(detail=str(e)) from e


def _as_list(value: Any) -> list[str]:
    if isinstance(value, str):
        value = json.loads(value) if value else []
    return [str(item) for item in value or []]


def _as_dict(value: Any) -> dict[str, str]:
    if isinstance(value, str):
        value = json.loads(value) if value else {}
    return {str(k): str(v) for k, v in (value or {}).items()}


def _provider_from_row(row: Any) -> ProviderConfig:
    return ProviderConfig(
        slug=row.slug,
        name=row.name,
        active=bool(row.active),
        auth_url=row.auth_url,
        token_url=row.token_url,
        user_info_url=row.user_info_url,
        client_id_ref=row.client_id,
        client_secret_ref=row.secret_env_key,
        redirect_uri=row.redirect_uri,
        scopes=_as_list(row.scope),
        extra_auth_params=_as_dict(row.response_params),
    )


def _account_from_row(row: Any) -> UserAccount:
    return UserAccount(
        id=row.id,
        email=row.email,
        username=row.username,
        password_hash=row.password,
        locale=row.locale,
    )


class SqlIdentityStore:
    """IdentityStore bound to one open transaction."""

    def __init__(self, conn: AsyncConnection, tables: Tables):
        self._conn = conn
        self._t = tables

    async def find_link(
        self, provider_slug: str, subject_id: str
    ) -> UserProviderLink | None:
        links = self._t.user_providers
        result = await self._conn.execute(
            select(links).where(links.c.slug == provider_slug, links.c.sub == subject_id)
        )
        row = result.first()
        if row is None:
            return None
        return UserProviderLink(
            provider_slug=row.slug, provider_subject_id=row.sub, user_id=row.user_id
        )

    async def get_account(self, user_id: int) -> UserAccount | None:
        users = self._t.users
        result = await self._conn.execute(select(users).where(users.c.id == user_id))
        row = result.first()
        return _account_from_row(row) if row else None

    async def find_account_by_email(self, email: str) -> UserAccount | None:
        users = self._t.users
        result = await self._conn.execute(select(users).where(users.c.email == email))
        row = result.first()
        return _account_from_row(row) if row else None

    async def create_account(
        self, email: str, password_hash: str, locale: str
    ) -> UserAccount:
        try:
            result = await self._conn.execute(
                insert(self._t.users).values(
                    email=email, password=password_hash, locale=locale
                )
            )
        except IntegrityError as e:
            raise DuplicateRecordError(f"account with email already exists: {e}") from e

        return UserAccount(
            id=result.inserted_primary_key[0],
            email=email,
            password_hash=password_hash,
            locale=locale,
        )

    async def create_link(
        self, provider_slug: str, subject_id: str, user_id: int
    ) -> UserProviderLink:
        try:
            await self._conn.execute(
                insert(self._t.user_providers).values(
                    user_id=user_id, slug=provider_slug, sub=subject_id
                )
            )
        except IntegrityError as e:
            raise DuplicateRecordError(
                f"identity {provider_slug}:{subject_id} already linked: {e}"
            ) from e

        logger.info(
            f"Linked {provider_slug} identity to user {user_id}",
            extra={"provider": provider_slug, "user_id": user_id},
        )
        return UserProviderLink(
            provider_slug=provider_slug, provider_subject_id=subject_id, user_id=user_id
        )

    async def assign_roles(self, user_id: int, role_slugs: list[str]) -> list[str]:
        if not role_slugs:
            return []

        roles = self._t.roles
        # Savepoint keeps a failed assignment from aborting the outer transaction
        async with self._conn.begin_nested():
            result = await self._conn.execute(
                select(roles.c.id, roles.c.slug).where(roles.c.slug.in_(role_slugs))
            )
            found = result.all()
            for role in found:
                await self._conn.execute(
                    insert(self._t.user_roles).values(user_id=user_id, role_id=role.id)
                )
        return [role.slug for role in found]

    async def get_role_slugs(self, user_id: int) -> list[str]:
        roles, user_roles = self._t.roles, self._t.user_roles
        result = await self._conn.execute(
            select(roles.c.slug)
            .join(user_roles, user_roles.c.role_id == roles.c.id)
            .where(user_roles.c.user_id == user_id)
            .order_by(roles.c.slug)
        )
        return list(result.scalars().all())

    async def get_capability_slugs(self, user_id: int) -> list[str]:
        capabilities, user_capabilities = self._t.capabilities, self._t.user_capabilities
        result = await self._conn.execute(
            select(capabilities.c.slug)
            .join(
                user_capabilities,
                user_capabilities.c.capability_id == capabilities.c.id,
            )
            .where(user_capabilities.c.user_id == user_id)
            .order_by(capabilities.c.slug)
        )
        return list(result.scalars().all())

    async def get_option(self, name: str) -> str | None:
        options = self._t.options
        result = await self._conn.execute(
            select(options.c.value).where(options.c.name == name)
        )
        return result.scalar_one_or_none()

    async def add_refresh_token(
        self, user_id: int, token_digest: str, expires_at: datetime
    ) -> None:
        await self._conn.execute(
            insert(self._t.refresh_tokens).values(
                user_id=user_id, token=token_digest, expires_at=expires_at
            )
        )


class SqlStore:
    """
    Relational store for provider configs, identities and token records.

    Each non-transactional method runs in its own short transaction.
    """

    def __init__(self, engine: AsyncEngine, tables: Tables):
        self._engine = engine
        self.tables = tables

    @classmethod
    def from_url(
        cls, database_url: str, table_prefix: str = "", **engine_kwargs: Any
    ) -> "SqlStore":
        engine = create_engine(database_url, **engine_kwargs)
        return cls(engine, define_tables(make_table_resolver(table_prefix)))

    @property
    def engine(self) -> AsyncEngine:
        return self._engine

    async def create_tables(self) -> None:
        with _translate_errors():
            async with self._engine.begin() as conn:
                await conn.run_sync(self.tables.metadata.create_all)

    async def close(self) -> None:
        await self._engine.dispose()

    async def seed_providers(self, providers: list[dict[str, Any]]) -> int:
        """
        Insert provider rows whose slug is not present yet.

        Returns:
            Number of rows inserted
        """
        table = self.tables.auth_providers
        inserted = 0
        with _translate_errors():
            async with self._engine.begin() as conn:
                existing = set(
                    (await conn.execute(select(table.c.slug))).scalars().all()
                )
                for provider in providers:
                    if provider["slug"] in existing:
                        continue
                    await conn.execute(insert(table).values(**provider))
                    inserted += 1
        if inserted:
            logger.info(f"Seeded {inserted} OAuth provider(s)")
        return inserted

    # ProviderConfigStore

    async def get_active_config(self, slug: str) -> ProviderConfig | None:
        table = self.tables.auth_providers
        with _translate_errors():
            async with self._engine.connect() as conn:
                result = await conn.execute(
                    select(table).where(table.c.slug == slug, table.c.active.is_(True))
                )
                row = result.first()
        return _provider_from_row(row) if row else None

    async def list_active_providers(self) -> list[ProviderSummary]:
        table = self.tables.auth_providers
        with _translate_errors():
            async with self._engine.connect() as conn:
                result = await conn.execute(
                    select(table.c.name, table.c.slug)
                    .where(table.c.active.is_(True))
                    .order_by(table.c.name)
                )
                rows = result.all()
        return [ProviderSummary(name=row.name, slug=row.slug) for row in rows]

    # LoginStore

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[SqlIdentityStore]:
        with _translate_errors():
            async with self._engine.begin() as conn:
                yield SqlIdentityStore(conn, self.tables)

    async def purge_expired_tokens(self, now: datetime) -> dict[str, int]:
        t = self.tables
        deleted = {}
        with _translate_errors():
            async with self._engine.begin() as conn:
                for key, table in (
                    ("revoked_tokens", t.revoked_tokens),
                    ("refresh_tokens", t.refresh_tokens),
                    ("oauth_states", t.oauth_states),
                ):
                    result = await conn.execute(
                        delete(table).where(table.c.expires_at < now)
                    )
                    deleted[key] = result.rowcount
        return deleted

    async def save_state(
        self, state_hash: str, provider_slug: str, expires_at: datetime
    ) -> None:
        with _translate_errors():
            async with self._engine.begin() as conn:
                await conn.execute(
                    insert(self.tables.oauth_states).values(
                        state_hash=state_hash,
                        provider=provider_slug,
                        expires_at=expires_at,
                    )
                )

    async def consume_state(
        self, state_hash: str, provider_slug: str, now: datetime
    ) -> bool:
        table = self.tables.oauth_states
        with _translate_errors():
            async with self._engine.begin() as conn:
                result = await conn.execute(
                    delete(table).where(
                        table.c.state_hash == state_hash,
                        table.c.provider == provider_slug,
                        table.c.expires_at > now,
                    )
                )
        return result.rowcount > 0
