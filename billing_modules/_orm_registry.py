"""
Module ORM Registry (``billing_modules._orm_registry``).

Responsibility
--------------
Import every SQLAlchemy ORM module so that ``Base.metadata`` holds all
table definitions before ``create_tables()`` runs.

Architecture position
---------------------
**Modules layer** -- utility.  Called lazily by
``billing_kernel.db.engine.create_tables``; idempotent.
"""


def import_all_orm_models() -> None:
    """Import kernel models, every ``billing_modules.*.orm`` and ``billing_services.orm``."""
    # Kernel tables first (sequence counters, audit records)
    import billing_kernel.models  # noqa: F401
    # fmt: off
    import billing_modules.ownership.orm  # noqa: F401
    import billing_modules.leases.orm  # noqa: F401
    import billing_modules.invoicing.orm  # noqa: F401
    import billing_modules.payments.orm  # noqa: F401
    import billing_modules.credit_notes.orm  # noqa: F401
    import billing_services.orm  # noqa: F401
    # fmt: on
