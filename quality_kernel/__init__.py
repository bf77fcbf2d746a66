"""
Quality Kernel - Nonconformance Disposition & Corrective Action

A transactional workflow core for manufacturing quality records:
- Non-Conformance Reports (NCR) with append-only history
- Material Review Board (MRB) records, native or projected from NCRs
- Automatic CAPA escalation for critical nonconformances
- Quorum-based disposition approval with optimistic concurrency
- Explicit CAPA status state machine
"""

__version__ = "0.1.0"
