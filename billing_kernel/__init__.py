"""
Billing Kernel

Infrastructure shared by the lease billing engine:
- Typed, coded exceptions grouped by error category
- Structured JSON logging with request-scoped context
- Database base classes, engine and session management
- ORM-level immutability for issued financial records
- Document number sequences and the audit sink
"""

__version__ = "0.1.0"
