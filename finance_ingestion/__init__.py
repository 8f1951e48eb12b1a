"""
Finance Ingestion - Source Package

Hybrid extraction of structured financial data from uploaded receipts,
invoices, boletos and credit card statements.

DESIGN PRINCIPLES:
1. Free deterministic extraction first, paid AI only when needed
2. Fail with a typed error, never with a raw exception
3. Every step must be auditable
4. The AI collaborator is swappable
"""

__version__ = "1.0.0"
__author__ = "Finance Ingestion Team"
