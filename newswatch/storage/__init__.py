"""Persistent ledger of processed feed items."""

from .ledger import Ledger, LedgerError, NewsAnalysisModel

__all__ = ["Ledger", "LedgerError", "NewsAnalysisModel"]
