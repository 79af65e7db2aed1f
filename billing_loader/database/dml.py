"""
Statement builders shared by the staging, worker and merge steps.

All statements are SQLAlchemy Core constructs with bound parameters; raw
record values never end up in the SQL text.
"""
from typing import List, Sequence

from sqlalchemy import Boolean, Column, MetaData, String, Table, select, true
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.engine import Connection
from sqlalchemy.sql import column, table
from sqlalchemy.sql.expression import TableClause

from ..core.exceptions import ConfigurationError
from ..core.schemas import Record

_DIALECT_INSERTS = {
    "postgresql": postgresql.insert,
    "sqlite": sqlite.insert,
}


def lightweight_table(name: str, key_column: str, flag_column: str) -> TableClause:
    """Table clause for the two loaded columns, no reflection needed."""
    return table(name, column(key_column, String), column(flag_column, Boolean))


def reflect_table(conn: Connection, name: str) -> Table:
    """Load a table definition from the live database."""
    return Table(name, MetaData(), autoload_with=conn)


def staging_table_like(target: Table, staging_name: str) -> Table:
    """
    Build a staging table with the target's column names and types.

    Keys, uniqueness, defaults and NOT NULL are left out so that workers can
    write duplicates concurrently.
    """
    columns = [Column(col.name, col.type, nullable=True) for col in target.columns]
    return Table(staging_name, MetaData(), *columns)


def build_insert_statement(staging: TableClause, records: Sequence[Record], key_column: str,
                           flag_column: str):
    """Single multi-row INSERT holding exactly the given records."""
    rows: List[dict] = [
        {key_column: record.msisdn, flag_column: record.prepaid} for record in records
    ]
    return staging.insert().values(rows)


def build_merge_statement(dialect: str, target: TableClause, staging: TableClause,
                          key_column: str, flag_column: str):
    """
    INSERT INTO target (key, flag) SELECT key, flag FROM staging
    ON CONFLICT (key) DO NOTHING

    The WHERE true keeps SQLite from reading ON CONFLICT as a join clause.
    """
    insert = _DIALECT_INSERTS.get(dialect)
    if insert is None:
        raise ConfigurationError(f"Insert-or-skip merge is not supported for dialect '{dialect}'")

    source = select(staging.c[key_column], staging.c[flag_column]).where(true())
    return (
        insert(target)
        .from_select([key_column, flag_column], source)
        .on_conflict_do_nothing(index_elements=[key_column])
    )
