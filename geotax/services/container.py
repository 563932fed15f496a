"""
services/container.py
──────────────────────────────────────────────────────────────────────────────
Dependency Injection container.

THIS IS THE ONLY FILE THAT NAMES CONCRETE ADAPTER CLASSES.

Startup order (all fatal errors surface here, before any order is priced):
  1. Settings.validate()                        → ConfigurationError
  2. load_features(BOUNDARIES_PATH)             → BoundaryDataError
  3. GeometryStore.build()                      (STRtree over boundaries)
  4. load_tax_config(JURISDICTIONS_PATH)        → ConfigurationError
  5. JurisdictionResolver                       (TaxLookupPort)
  6. PostgresOrderRepository                    (OrderRepositoryPort)
  7. ImportAdmissionGate(MAX_CONCURRENT_IMPORTS)
  8. OrderService

Replace the database:
  - from geotax.adapters.postgres_orders import PostgresOrderRepository
  + from geotax.adapters.sqlite_orders import SqliteOrderRepository

Thread safety:
  @lru_cache(maxsize=1) makes get_service() return the same instance across
  calls.  The resolver and geometry store are immutable after construction
  and shared by every thread; the repository uses a thread-safe pool.
"""
from __future__ import annotations

import logging
from functools import lru_cache

from geotax.adapters.jurisdiction_files import load_features, load_tax_config
from geotax.adapters.postgres_orders import PostgresOrderRepository
from geotax.config.settings import get_settings
from geotax.services.admission import ImportAdmissionGate
from geotax.services.geometry_store import GeometryStore
from geotax.services.orders import OrderService
from geotax.services.resolver import JurisdictionResolver

logger = logging.getLogger(__name__)


@lru_cache(maxsize=1)
def get_resolver() -> JurisdictionResolver:
    """Build the spatial resolver from the configured reference files.

    Raises:
        ConfigurationError: On invalid settings or tax configuration.
        BoundaryDataError:  If the boundary dataset cannot be loaded.
    """
    settings = get_settings().validate()

    store = GeometryStore.build(load_features(settings.boundaries_path))
    tax_config = load_tax_config(settings.jurisdictions_path)
    resolver = JurisdictionResolver(store, tax_config.jurisdictions)

    missing = resolver.unconfigured_names()
    if missing:
        logger.warning(
            "Jurisdictions without tax config resolve as out_of_scope | count=%d names=%s",
            len(missing),
            sorted(missing)[:10],
        )
    return resolver


@lru_cache(maxsize=1)
def get_repository() -> PostgresOrderRepository:
    """Shared repository (one connection pool per process)."""
    return PostgresOrderRepository(get_settings().validate())


@lru_cache(maxsize=1)
def get_service() -> OrderService:
    """Build and return the fully wired OrderService singleton.

    Returns:
        OrderService ready to price, persist and import orders.

    Raises:
        ConfigurationError: On invalid settings or reference data.
    """
    settings = get_settings().validate()
    resolver = get_resolver()   # TaxLookupPort

    # ── Infrastructure adapters ────────────────────────────────────────────
    repository = get_repository()   # OrderRepositoryPort
    gate = ImportAdmissionGate(settings.max_concurrent_imports)

    service = OrderService(
        tax_lookup=resolver,
        repository=repository,
        gate=gate,
        settings=settings,
    )
    logger.info(
        "OrderService ready | import_slots=%d batch_size=%d",
        settings.max_concurrent_imports,
        settings.batch_size,
    )
    return service
