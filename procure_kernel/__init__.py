"""
Procurement Kernel

The requisition/approval core of the procurement workflow engine:
- Explicit requisition state machine with a single transition table
- Approval step ledger with sequential/parallel gating
- Budget ledger with reserve/release/commit and a non-negative remaining balance
- Append-only, hash-chained audit trail
"""

__version__ = "0.1.0"
