"""
SGDEA Kernel - workflow core of the document archival system.

A transactional workflow engine for documents, case files and contracts with:
- Versioned workflow definitions (ordered approval steps)
- Per-entity workflow instances with a monotonic state machine
- Optimistic revision checks on every mutation
- Post-commit audit, notification and indexing side effects
"""

__version__ = "0.1.0"
