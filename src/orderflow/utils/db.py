"""Schema management for SQL-backed providers (sqlite, postgresql).

The memory provider needs no schema; ``manage.py setup-db`` is only useful
once ``domain.toml`` points a provider at a real database.
"""

from collections.abc import Iterator

import structlog
from protean.domain import Domain
from sqlalchemy import create_engine

logger = structlog.get_logger(__name__)

SQL_PROVIDERS = ("sqlite", "postgresql")


def _sql_providers(domain: Domain) -> Iterator:
    for provider in domain.providers.values():
        if provider.conn_info["provider"] in SQL_PROVIDERS:
            yield provider


def _register_tables(domain: Domain, provider) -> int:
    """Build the SQLAlchemy model of every aggregate and entity stored in ``provider``.

    Protean creates a model lazily, the first time a repository touches its
    DAO, so tables only exist in the provider's metadata after this runs.
    """
    records = list(domain.registry.aggregates.values()) + list(domain.registry.entities.values())
    registered = 0
    for record in records:
        if record.cls.meta_.provider == provider.name:
            domain.repository_for(record.cls)._dao  # noqa: B018
            registered += 1
    return registered


def setup_db(domain: Domain) -> None:
    with domain.domain_context():
        for provider in _sql_providers(domain):
            engine = create_engine(provider.conn_info["database_uri"])
            try:
                tables = _register_tables(domain, provider)
                provider._metadata.create_all(engine, checkfirst=True)
            finally:
                engine.dispose()
            logger.info("Schema created", provider=provider.name, tables=tables)


def drop_db(domain: Domain) -> None:
    with domain.domain_context():
        for provider in _sql_providers(domain):
            engine = create_engine(provider.conn_info["database_uri"])
            try:
                _register_tables(domain, provider)
                provider._metadata.drop_all(engine, checkfirst=True)
            finally:
                engine.dispose()
            logger.info("Schema dropped", provider=provider.name)
