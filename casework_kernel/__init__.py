"""
Casework Kernel

Persistence, domain types and services for staged case approvals and the
per-project cost-center ledger:
- Role-quorum approval records with append-only actions
- Hard payment gate before case -> project conversion
- Ledger aggregates kept in step with the transaction log
- Structured, context-aware logging
"""

__version__ = "0.1.0"
