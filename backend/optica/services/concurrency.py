# Overview: Row-level guards for state transitions.

from __future__ import annotations

from sqlalchemy import update

from ..extensions import db


def lock_for_update(query):
    """
    Apply row-level locking for critical operations.

    NOTE: SQLite ignores SELECT ... FOR UPDATE, but other DBs will honor it.
    """
    return query.with_for_update()


def conditional_transition(model, row_id: int, *, from_status: str, values: dict) -> bool:
    """
    Single-statement compare-and-set on a status column.

    Issues UPDATE ... WHERE id = :row_id AND status = :from_status and
    reports whether exactly one row changed. Two concurrent callers cannot
    both see True for the same row. Does not commit.
    """
    stmt = (
        update(model)
        .where(model.id == row_id, model.status == from_status)
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    result = db.session.execute(stmt)
    return result.rowcount == 1
