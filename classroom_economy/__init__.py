"""
Classroom Economy Engine

Ledger, reward, loan, bulk, disaster and insurance engines for a classroom
economic simulator. All money uses Decimal fixed-point arithmetic and every
balance change is an atomic store transaction with an audit record.
"""

__version__ = "1.0.0"
