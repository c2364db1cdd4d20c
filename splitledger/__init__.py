"""
Split Ledger - Source Package

A multi-user expense tracker: shared groups with running balances,
personal income/expense logging and receipt-assisted expense entry.

DESIGN PRINCIPLES:
1. The group ledger is always zero-sum
2. Fail early, fail visibly
3. No silent corrections (rounding drift is reported, never hidden)
4. Expense history is append-only
5. Storage layer is swappable
"""

__version__ = "1.0.0"
__author__ = "Split Ledger Team"
