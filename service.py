from __future__ import annotations

import logging
import os
from pathlib import Path

from clients import ClientRegistry
from guard import InvoiceGuard
from invoicing import InvoiceGenerator
from ledger import TimeEntryLedger
from rates import RateBook
from storage import Storage, default_db_path
from tickets import TicketBook

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def default_log_path() -> Path:
    if env_path := os.environ.get("TIMEVAULT_LOG_FILE"):
        return Path(env_path)
    return Path(__file__).parent / "data" / "timevault.log"


def configure_logging(level: str | None = None, log_file: Path | str | None = None) -> None:
    """Send log records to a file; the terminal belongs to the UI."""
    level = (level or os.environ.get("TIMEVAULT_LOG_LEVEL", "INFO")).upper()
    path = Path(log_file) if log_file else default_log_path()
    path.parent.mkdir(parents=True, exist_ok=True)
    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format=LOG_FORMAT,
        filename=path,
    )


class BillingService:
    """Everything a caller needs, wired to one store.

    Construct one per process and hand it to request handlers or the UI.
    """

    def __init__(self, storage: Storage | None = None, db_path: Path | str | None = None):
        self.storage = storage or Storage(db_path or default_db_path())
        self.ledger = TimeEntryLedger(self.storage)
        self.invoices = InvoiceGenerator(self.storage, self.ledger)
        self.guard = InvoiceGuard(self.storage, self.ledger, self.invoices)
        self.clients = ClientRegistry(self.storage)
        self.rates = RateBook(self.storage)
        self.tickets = TicketBook(self.storage)

    def load(self) -> BillingService:
        """Create tables if needed and warm the client cache."""
        self.storage.init_db()
        self.clients.load(force=True)
        return self

    def reset(self) -> None:
        """Wipe all data and drop cached state."""
        self.storage.reset()
        self.clients.reset()

    @property
    def config(self):
        return self.storage.get_config()
