"""
Backoffice Kernel

Ledger posting engine for a multi-branch financial-services back-office:
- Branch-scoped float accounts with guarded balance movements
- Balanced, idempotent general-ledger posting
- Domain transaction recording with best-effort side effects
- Read-side rollups for dashboards and ledger reports
"""

__version__ = "0.1.0"
