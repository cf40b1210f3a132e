"""
Terminal-side components: durable local store, server client and the POS
checkout/sync loop that keeps selling while the server is unreachable.
"""

from .config import TerminalConfig
from .local_store import LocalStore
from .client import LedgerClient, LedgerRejected, ServerUnavailable
from .pos import CheckoutResult, PosTerminal

__all__ = [
    'TerminalConfig',
    'LocalStore',
    'LedgerClient', 'LedgerRejected', 'ServerUnavailable',
    'CheckoutResult', 'PosTerminal',
]
