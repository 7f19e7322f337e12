"""
Ábaco - Ledger Core

Budgets, transactions and the reports derived from them, for account
holders tracking their personal finances.

DESIGN PRINCIPLES:
1. A budget's spent total always equals its linked expenses
2. Fail early, fail visibly
3. Never drop a budget adjustment; repair drift instead
4. Every mutation is auditable
5. Storage layer is swappable
"""

__version__ = "1.0.0"
__author__ = "Ábaco Team"
