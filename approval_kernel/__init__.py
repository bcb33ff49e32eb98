"""
Approval Kernel

Persistence-backed approval workflow core:
- Declarative rule matching over entity data
- Multi-step approval plans with fan-out quorum groups
- Guarded (compare-and-swap) step and request transitions
- Hash-chained audit trail
"""

__version__ = "0.1.0"
