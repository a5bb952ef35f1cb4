"""
Domos core - workflow, double-entry ledger and funds-transfer tracking.

A consistency-enforcing layer over a relational store:
- Workflow graphs with authorized, recorded state transitions
- Balanced journals with unique remittance keys
- Event-sourced funds-transfer and invoice status
- Additive many-to-many ownership for visibility scoping
"""

__version__ = "0.1.0"
