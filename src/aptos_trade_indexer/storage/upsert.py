"""Dialect-aware INSERT ... ON CONFLICT statements.

A ``ConflictPolicy`` states, per table, which columns a key collision
overwrites, which it adds to and which keep the larger value. Tables with none
of these are insert-or-ignore.
"""

from __future__ import annotations

from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from sqlalchemy import and_, case, or_
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert

if TYPE_CHECKING:
    from sqlalchemy import ColumnElement, Table
    from sqlalchemy.ext.asyncio import AsyncSession

Guard = Callable[["Table", Any], "ColumnElement[bool]"]


@dataclass(frozen=True)
class ConflictPolicy:
    """Column merge rule applied when an inserted row hits an existing key.

    Attributes:
        index_elements: Columns of the conflict target (the primary key).
        overwrite: Columns replaced by the incoming value.
        additive: Columns incremented by the incoming value.
        latest: Columns keeping the larger of the stored and incoming value.
        guard: Optional ``(table, excluded) -> condition``; the existing row is
            left untouched when the condition is false.
    """

    index_elements: tuple[str, ...]
    overwrite: tuple[str, ...] = ()
    additive: tuple[str, ...] = ()
    latest: tuple[str, ...] = ()
    guard: Guard | None = None

    @property
    def do_nothing(self) -> bool:
        return not (self.overwrite or self.additive or self.latest)


def newer_event_guard(table: Table, excluded: Any) -> ColumnElement[bool]:
    """Apply an update only if it is not older than the stored row.

    Rows carry the ``(last_update_version, last_update_event_idx)`` of the
    event that last wrote them. Equal positions are re-applied, which makes an
    exact replay converge to the same state.
    """
    return or_(
        table.c.last_update_version < excluded.last_update_version,
        and_(
            table.c.last_update_version == excluded.last_update_version,
            table.c.last_update_event_idx <= excluded.last_update_event_idx,
        ),
    )


def newer_version_guard(table: Table, excluded: Any) -> ColumnElement[bool]:
    return table.c.last_update_version <= excluded.last_update_version


def dialect_insert(session: AsyncSession, table: Table) -> Any:
    """Return an INSERT construct supporting ON CONFLICT for the session's dialect."""
    dialect = session.get_bind().dialect.name
    if dialect == "postgresql":
        return pg_insert(table)
    if dialect == "sqlite":
        return sqlite_insert(table)
    raise RuntimeError(f"Upserts are not supported on dialect {dialect!r}")


async def upsert_rows(
    session: AsyncSession,
    table: Table,
    rows: Sequence[Mapping[str, Any]],
    policy: ConflictPolicy,
) -> None:
    """Upsert ``rows`` into ``table`` following ``policy``.

    Rows are sent as an executemany so each row is resolved against the
    conflict target on its own.
    """
    if not rows:
        return

    stmt = dialect_insert(session, table)
    index_elements = list(policy.index_elements)
    if policy.do_nothing:
        stmt = stmt.on_conflict_do_nothing(index_elements=index_elements)
    else:
        set_: dict[str, Any] = {col: stmt.excluded[col] for col in policy.overwrite}
        for col in policy.additive:
            set_[col] = table.c[col] + stmt.excluded[col]
        for col in policy.latest:
            set_[col] = case(
                (table.c[col] < stmt.excluded[col], stmt.excluded[col]),
                else_=table.c[col],
            )
        where = policy.guard(table, stmt.excluded) if policy.guard is not None else None
        stmt = stmt.on_conflict_do_update(index_elements=index_elements, set_=set_, where=where)

    await session.execute(stmt, [dict(row) for row in rows])
