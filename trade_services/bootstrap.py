"""
trade_services.bootstrap -- Process wiring from a TraderConfig.

Responsibility:
    Creates every runtime collaborator exactly once and wires them into a
    ``ReconciliationEngine``: logging, the database engine and schema, the
    append-only listeners, the catalog, the error journal and the
    notifier.  This is the single place where configuration is translated
    into kernel objects.

Architecture position:
    Services -- the top of the stack.  The kernel never imports this
    module.

Usage:
    from trade_config import get_active_config
    from trade_services.bootstrap import build_engine

    config = get_active_config()
    engine = build_engine(config, listing_mirror=MarketClient(...))
    engine.create_item_stock("primed_flow", quantity=1, price=40)
"""

from __future__ import annotations

from trade_config.schema import TraderConfig
from trade_kernel.db.engine import create_tables, get_session, init_engine_from_url
from trade_kernel.db.immutability import register_immutability_listeners
from trade_kernel.domain.clock import Clock
from trade_kernel.domain.listing import ListingMirror
from trade_kernel.domain.notification import ChangeNotifier
from trade_kernel.logging_config import configure_logging, get_logger
from trade_kernel.services.catalog_loader import load_catalog
from trade_kernel.services.error_journal import ErrorJournal
from trade_kernel.services.reconciliation_engine import ReconciliationEngine
from trade_services.notifiers import LoggingChangeNotifier

logger = get_logger("bootstrap")


def build_engine(
    config: TraderConfig,
    listing_mirror: ListingMirror,
    notifier: ChangeNotifier | None = None,
    clock: Clock | None = None,
) -> ReconciliationEngine:
    """
    Build a ready-to-use ReconciliationEngine from configuration.

    Postconditions:
        - The database schema exists and the transaction log is append-only.
        - The returned engine owns a fresh session.

    Raises:
        FileNotFoundError: the catalog file does not exist.
        sqlalchemy.exc.SQLAlchemyError: the database is unreachable.
    """
    configure_logging(level=config.logging.level)

    init_engine_from_url(config.database.url, echo=config.database.echo)
    create_tables()
    register_immutability_listeners()

    catalog = load_catalog(config.catalog.path)
    journal = ErrorJournal(config.error_journal.path, clock=clock)

    engine = ReconciliationEngine(
        session=get_session(),
        catalog=catalog,
        listing_mirror=listing_mirror,
        notifier=notifier or LoggingChangeNotifier(),
        error_journal=journal,
        clock=clock,
        default_riven_hidden=config.stock.default_riven_hidden,
    )
    logger.info(
        "engine_built",
        extra={
            "catalog_size": len(catalog),
            "error_journal": str(config.error_journal.path),
            "default_riven_hidden": config.stock.default_riven_hidden,
        },
    )
    return engine
