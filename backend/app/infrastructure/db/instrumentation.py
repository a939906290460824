from time import perf_counter

from sqlalchemy import event
from sqlalchemy.engine import Engine

from app.infrastructure.observability.metrics import observe_db_query


def instrument_engine(engine: Engine, *, operation: str) -> Engine:
    """Record every cursor execution on ``engine`` in the DB query histogram."""

    @event.listens_for(engine, "before_cursor_execute")
    def _before_cursor_execute(conn, cursor, statement, parameters, context, executemany):
        conn.info.setdefault("query_started_at_stack", []).append(perf_counter())

    @event.listens_for(engine, "after_cursor_execute")
    def _after_cursor_execute(conn, cursor, statement, parameters, context, executemany):
        stack = conn.info.get("query_started_at_stack", [])
        if not stack:
            return
        started_at = stack.pop(-1)
        observe_db_query(perf_counter() - started_at, operation=operation)

    return engine
