"""
Module ORM Registry (``backoffice_modules._orm_registry``).

Responsibility
--------------
Ensure all SQLAlchemy ORM models are imported so that ``Base.metadata``
contains their table definitions before tables are created.
``create_all_tables()`` imports them and then creates the full schema.

Architecture position
---------------------
**Modules layer** -- utility.  Imports kernel models and every
``backoffice_modules.*.orm`` module.
"""


def import_all_orm_models() -> None:
    """Import kernel models and every module ORM file.

    This function is idempotent -- repeated calls are harmless.
    """
    # Kernel tables first (audit, ledger, idempotency, sequence counters)
    import backoffice_kernel.models  # noqa: F401
    import backoffice_kernel.services.sequence_service  # noqa: F401
    # fmt: off
    import backoffice_modules.cash_advance.orm  # noqa: F401
    import backoffice_modules.purchasing.orm  # noqa: F401
    import backoffice_modules.reimbursement.orm  # noqa: F401


def create_all_tables(engine=None) -> None:
    """Create kernel + all module ORM tables.

    This is the canonical entry point for any script or fixture that needs
    the full schema.

    Preconditions:
        ``engine`` is given, or the kernel engine was initialized via
        ``init_engine_from_url()``.
    """
    from backoffice_kernel.db.engine import create_tables

    import_all_orm_models()
    create_tables(engine)


def drop_all_tables(engine=None) -> None:
    from backoffice_kernel.db.engine import drop_tables

    import_all_orm_models()
    drop_tables(engine)
