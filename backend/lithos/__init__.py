# backend/lithos/__init__.py
"""Multi-currency investment valuation and price reconciliation core."""

__version__ = "1.0.0"
