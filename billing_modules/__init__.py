"""
Billing Modules.

Domain modules of the lease billing engine.  Each module contains:
- Domain models (frozen dataclasses, the nouns)
- ORM models (SQLAlchemy persistence)
- A service that runs inside the caller's session
- Workflows (state machines) or pure calculations where relevant

Modules:
- ownership: Fractional owners of buildings and units
- leases: Lease terms, recurring charges, charge accumulation
- invoicing: Invoice lifecycle (draft, issue, void, recompute)
- payments: Payment confirmation workflow and status history
- credit_notes: Credit notes against issued invoices
"""
