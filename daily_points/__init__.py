"""
Daily-check points aggregation and ledger reconciliation.
"""

__version__ = "0.1.0"
