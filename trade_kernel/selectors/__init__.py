"""Read-only selectors over stock and trade history."""

from trade_kernel.selectors.stock_selector import StockSelector, StockSummary

__all__ = ["StockSelector", "StockSummary"]
