"""
Disbursement Kernel

A role-routed approval workflow for disbursement requests with:
- Table-driven routing (Employee -> Manager -> Finance -> CEO)
- Atomic, locked transitions per request
- Append-only timeline audit trail
- Cash advance liquidation linkage
"""

__version__ = "0.1.0"
