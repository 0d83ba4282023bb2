"""
Relational schema and engine setup.

Tables are defined through a table-name resolver so several tenants can
share one database under different prefixes (TABLE_PREFIX).
"""

import logging
from dataclasses import dataclass
from typing import Any, Callable

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    UniqueConstraint,
    event,
    func,
)
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine


logger = logging.getLogger(__name__)

TableResolver = Callable[[str], str]


def make_table_resolver(prefix: str = "") -> TableResolver:
    """Return a resolver mapping a logical table name to its physical name."""

    def resolve(name: str) -> str:
        return f"{prefix}{name}"

    return resolve


@dataclass(frozen=True)
class Tables:
    """Table objects for one tenant prefix."""

    metadata: MetaData
    auth_providers: Table
    users: Table
    user_providers: Table
    roles: Table
    user_roles: Table
    capabilities: Table
    user_capabilities: Table
    refresh_tokens: Table
    revoked_tokens: Table
    oauth_states: Table
    options: Table


def _timestamps() -> list[Column]:
    return [
        Column("created_at", DateTime(timezone=True), server_default=func.now()),
        Column(
            "updated_at",
            DateTime(timezone=True),
            server_default=func.now(),
            onupdate=func.now(),
        ),
    ]


def define_tables(table: TableResolver) -> Tables:
    """Define every table used by the login flow under the given resolver."""
    metadata = MetaData()

    auth_providers = Table(
        table("auth_providers"),
        metadata,
        Column("id", Integer, primary_key=True),
        Column("name", String(255)),
        Column("slug", String(100), nullable=False, unique=True),
        Column("client_id", String(255), nullable=False),  # env var name
        Column("secret_env_key", String(255), nullable=False),  # env var name
        Column("scope", JSON),
        Column("auth_url", String(1024), nullable=False),
        Column("token_url", String(1024), nullable=False),
        Column("user_info_url", String(1024), nullable=False),
        Column("redirect_uri", String(1024), nullable=False),
        Column("active", Boolean, nullable=False, default=False),
        Column("response_params", JSON),
        *_timestamps(),
    )

    users = Table(
        table("users"),
        metadata,
        Column("id", Integer, primary_key=True),
        Column("username", String(255), unique=True),
        Column("email", String(255), unique=True),
        Column("password", String(255)),
        Column("locale", String(20)),
        *_timestamps(),
    )

    user_providers = Table(
        table("user_providers"),
        metadata,
        Column("id", Integer, primary_key=True),
        Column(
            "user_id",
            Integer,
            ForeignKey(f"{users.name}.id", ondelete="CASCADE"),
            nullable=False,
        ),
        Column(
            "slug",
            String(100),
            ForeignKey(f"{auth_providers.name}.slug", ondelete="CASCADE"),
            nullable=False,
        ),
        Column("sub", String(255), nullable=False),
        UniqueConstraint("slug", "sub", name=f"{table('user_providers')}_slug_sub_unique"),
        *_timestamps(),
    )

    roles = Table(
        table("roles"),
        metadata,
        Column("id", Integer, primary_key=True),
        Column("slug", String(100), nullable=False, unique=True),
        Column("name", String(255)),
    )

    user_roles = Table(
        table("user_roles"),
        metadata,
        Column("id", Integer, primary_key=True),
        Column(
            "user_id",
            Integer,
            ForeignKey(f"{users.name}.id", ondelete="CASCADE"),
            nullable=False,
        ),
        Column(
            "role_id",
            Integer,
            ForeignKey(f"{roles.name}.id", ondelete="CASCADE"),
            nullable=False,
        ),
        UniqueConstraint("user_id", "role_id", name=f"{table('user_roles')}_unique"),
    )

    capabilities = Table(
        table("capabilities"),
        metadata,
        Column("id", Integer, primary_key=True),
        Column("slug", String(100), nullable=False, unique=True),
        Column("name", String(255)),
        *_timestamps(),
    )

    user_capabilities = Table(
        table("user_capabilities"),
        metadata,
        Column("id", Integer, primary_key=True),
        Column(
            "user_id",
            Integer,
            ForeignKey(f"{users.name}.id", ondelete="CASCADE"),
            nullable=False,
        ),
        Column(
            "capability_id",
            Integer,
            ForeignKey(f"{capabilities.name}.id", ondelete="CASCADE"),
            nullable=False,
        ),
        UniqueConstraint(
            "user_id", "capability_id", name=f"{table('user_capabilities')}_unique"
        ),
        *_timestamps(),
    )

    refresh_tokens = Table(
        table("refresh_tokens"),
        metadata,
        Column("id", Integer, primary_key=True),
        Column(
            "user_id",
            Integer,
            ForeignKey(f"{users.name}.id", ondelete="CASCADE"),
            nullable=False,
        ),
        Column("token", String(128), nullable=False, unique=True),  # sha256 hex
        Column("expires_at", DateTime(timezone=True), index=True),
        *_timestamps(),
    )

    revoked_tokens = Table(
        table("revoked_tokens"),
        metadata,
        Column("id", Integer, primary_key=True),
        Column("token", String(128), nullable=False, unique=True),
        Column("expires_at", DateTime(timezone=True), index=True),
        Column("revoked_at", DateTime(timezone=True)),
        *_timestamps(),
    )

    oauth_states = Table(
        table("oauth_states"),
        metadata,
        Column("id", Integer, primary_key=True),
        Column("state_hash", String(64), nullable=False, index=True),
        Column("provider", String(100), nullable=False),
        Column("expires_at", DateTime(timezone=True), nullable=False, index=True),
        Column("created_at", DateTime(timezone=True), server_default=func.now()),
    )

    options = Table(
        table("options"),
        metadata,
        Column("id", Integer, primary_key=True),
        Column("name", String(255), unique=True),
        Column("value", Text),
        Column("autoload", Boolean, default=False),
        *_timestamps(),
    )

    return Tables(
        metadata=metadata,
        auth_providers=auth_providers,
        users=users,
        user_providers=user_providers,
        roles=roles,
        user_roles=user_roles,
        capabilities=capabilities,
        user_capabilities=user_capabilities,
        refresh_tokens=refresh_tokens,
        revoked_tokens=revoked_tokens,
        oauth_states=oauth_states,
        options=options,
    )


def create_engine(database_url: str, **kwargs: Any) -> AsyncEngine:
    """
    Create the async engine for the store.

    SQLite connections get explicit BEGIN handling so SAVEPOINTs (used for
    best-effort role assignment) work inside the flow transaction.
    """
    engine = create_async_engine(database_url, **kwargs)

    if engine.dialect.name == "sqlite":

        @event.listens_for(engine.sync_engine, "connect")
        def _disable_driver_begin(dbapi_connection, connection_record):
            dbapi_connection.isolation_level = None

        @event.listens_for(engine.sync_engine, "begin")
        def _emit_begin(conn):
            conn.exec_driver_sql("BEGIN")

        logger.debug("Configured SQLite transaction handling")

    return engine
