"""
Campus loyalty points ledger
"""
__version__ = "1.0.0"
