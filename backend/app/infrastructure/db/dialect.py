from sqlalchemy.dialects import postgresql, sqlite

_INSERT_BY_DIALECT = {
    "postgresql": postgresql.insert,
    "sqlite": sqlite.insert,
}


def dialect_insert(dialect_name: str, table):
    """Return an INSERT construct supporting ``on_conflict_do_*`` for the given dialect."""
    try:
        factory = _INSERT_BY_DIALECT[dialect_name]
    except KeyError as exc:
        raise NotImplementedError(f"ON CONFLICT inserts are not supported for dialect {dialect_name!r}") from exc
    return factory(table)
