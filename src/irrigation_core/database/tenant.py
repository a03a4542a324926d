"""
Tenant Context

Validation and propagation of the caller's company id.

The company id only ever reaches SQL as a bound parameter
(``set_config($1, $2, true)``), and is validated as a strict positive
integer before that. The context is transaction-local: it reverts on
COMMIT or ROLLBACK, so a pooled connection never carries one tenant's
context into the next borrower's work.

Isolation itself is enforced by the database (row-level security policies
or views keyed on the setting). This module only carries the signal.
"""

import re
from typing import Any

from .errors import InvalidTenantError

TENANT_SETTING = "app.current_company_id"

# Strict decimal, no sign, no leading zeros, no whitespace
COMPANY_ID_PATTERN = re.compile(r"[1-9][0-9]*")

# Largest value a PostgreSQL bigint column can hold
MAX_COMPANY_ID = 2**63 - 1


def validate_company_id(company_id: Any) -> int:
    """
    Coerce a company id to a positive int or raise InvalidTenantError.

    Accepts ints and canonical decimal strings. Everything else, including
    bools, floats, ``"1 OR 1=1"`` and ``"1'; DROP TABLE clients; --"``, is
    rejected before it can get anywhere near a statement.
    """
    if isinstance(company_id, bool):
        raise InvalidTenantError(f"Invalid company id type: {type(company_id).__name__}")

    if isinstance(company_id, int):
        value = company_id
    elif isinstance(company_id, str):
        if not COMPANY_ID_PATTERN.fullmatch(company_id):
            raise InvalidTenantError("Invalid company id: expected a positive integer")
        value = int(company_id)
    else:
        raise InvalidTenantError(f"Invalid company id type: {type(company_id).__name__}")

    if value <= 0 or value > MAX_COMPANY_ID:
        raise InvalidTenantError("Invalid company id: out of range")
    return value


async def apply_postgres_tenant(conn: Any, company_id: int, timeout: float = None) -> None:
    """
    Scope the current PostgreSQL transaction to ``company_id``.

    ``set_config(..., true)`` is the function form of ``SET LOCAL`` and,
    unlike ``SET``, accepts bound parameters.
    """
    await conn.execute(
        "SELECT set_config($1, $2, true)",
        TENANT_SETTING,
        str(validate_company_id(company_id)),
        timeout=timeout,
    )


class SQLiteTenantSlot:
    """
    Holder behind SQLite's ``current_company_id()`` SQL function.

    SQLite has no session variables, so the backend registers this object's
    ``__call__`` as a SQL function. It returns the active company id inside
    a tenant-scoped transaction and NULL everywhere else.
    """

    def __init__(self):
        self._company_id = None

    def set(self, company_id: int) -> None:
        self._company_id = validate_company_id(company_id)

    def clear(self) -> None:
        self._company_id = None

    @property
    def company_id(self):
        return self._company_id

    def __call__(self):
        return self._company_id
