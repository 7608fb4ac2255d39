"""
Ledger package for the proxy service.

Owns every mutation of ``user-*`` balance keys.
"""

from .balance import BalanceLedger, Direction, User

__all__ = ["BalanceLedger", "Direction", "User"]
