"""
Hydrogen Credit Registry

Tracks green-hydrogen credits through issuance, transfer and retirement, keeping
an auditor-reviewed request workflow in step with the authoritative credit ledger.
"""

__version__ = "1.0.0"
