"""ledgersync - Aggregate bank and wallet balances into a net-worth history."""

from ledgersync.portfolio import PortfolioReconstructor
from ledgersync.reconciler import Reconciler
from ledgersync.service import LedgerService
from ledgersync.sync import SyncOrchestrator

__version__ = "0.1.0"
__all__ = ["LedgerService", "PortfolioReconstructor", "Reconciler", "SyncOrchestrator"]
