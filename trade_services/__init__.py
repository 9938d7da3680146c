"""
trade_services -- Process wiring and concrete adapters.

Dependency direction:
    trade_services/ -> trade_kernel/, trade_config/  (allowed)
    trade_kernel/   -> trade_services/               (FORBIDDEN)
"""

from trade_services.bootstrap import build_engine
from trade_services.notifiers import FanOutNotifier, LoggingChangeNotifier

__all__ = ["FanOutNotifier", "LoggingChangeNotifier", "build_engine"]
