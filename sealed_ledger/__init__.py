"""
Sealed Ledger - Source Package

An encrypted personal ledger: income and expenses, installment groups and
recurring charges, with description and amount encrypted per field under a
key every device can derive for the same owner.

DESIGN PRINCIPLES:
1. The store never sees plaintext descriptions or amounts
2. A mutation is one atomic batch, or nothing
3. One unreadable entry never takes down the whole ledger
4. Every mutation is auditable
5. Storage and crypto primitives are swappable
"""

__version__ = "1.0.0"
__author__ = "Sealed Ledger Team"
