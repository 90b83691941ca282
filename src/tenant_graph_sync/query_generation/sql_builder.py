"""
Parameterized SQL for the relational source.

Table and column names are composed with `psycopg2.sql.Identifier`, so they
are always quoted; filter values, limits and offsets are bound parameters.
"""

from dataclasses import dataclass, field
from typing import Any, Optional, Tuple

from psycopg2 import sql


@dataclass(frozen=True)
class SqlStatement:
    """
    A read statement against one source table.

    The statement keeps its structured arguments so it can be rendered for
    any schema (`composed`) and inspected without a live connection.
    """

    kind: str
    table: str
    filters: Tuple[Tuple[str, Any], ...] = ()
    order_by: Optional[str] = None
    limit: Optional[int] = None
    offset: Optional[int] = None
    group_by: Tuple[str, ...] = field(default=())

    @property
    def params(self) -> Tuple[Any, ...]:
        values = [value for _, value in self.filters]
        if self.limit is not None:
            values.append(self.limit)
        if self.offset is not None:
            values.append(self.offset)
        return tuple(values)

    def composed(self, schema: str) -> sql.Composed:
        table = sql.SQL("{}.{}").format(
            sql.Identifier(schema), sql.Identifier(self.table)
        )

        if self.kind == "select_page":
            query = sql.SQL("SELECT * FROM {}").format(table)
        elif self.kind == "count_rows":
            query = sql.SQL("SELECT COUNT(*) AS count FROM {}").format(table)
        elif self.kind == "find_duplicates":
            columns = sql.SQL(", ").join(sql.Identifier(c) for c in self.group_by)
            query = sql.SQL(
                "SELECT {columns}, COUNT(*) AS count FROM {table}"
            ).format(columns=columns, table=table)
        else:
            raise ValueError(f"Unknown SQL statement kind: {self.kind}")

        if self.filters:
            query = query + sql.SQL(" WHERE ") + sql.SQL(" AND ").join(
                sql.SQL("{} = %s").format(sql.Identifier(column))
                for column, _ in self.filters
            )
        if self.group_by:
            query = (
                query
                + sql.SQL(" GROUP BY ")
                + sql.SQL(", ").join(sql.Identifier(c) for c in self.group_by)
                + sql.SQL(" HAVING COUNT(*) > 1")
            )
        if self.order_by:
            query = query + sql.SQL(" ORDER BY {} ASC").format(
                sql.Identifier(self.order_by)
            )
        if self.limit is not None:
            query = query + sql.SQL(" LIMIT %s")
        if self.offset is not None:
            query = query + sql.SQL(" OFFSET %s")
        return query


def select_page(
    table: str,
    key_field: str,
    limit: int,
    offset: int,
    filters: Tuple[Tuple[str, Any], ...] = (),
) -> SqlStatement:
    """One page of rows in ascending key order."""
    return SqlStatement(
        kind="select_page",
        table=table,
        filters=filters,
        order_by=key_field,
        limit=limit,
        offset=offset,
    )


def count_rows(table: str, filters: Tuple[Tuple[str, Any], ...] = ()) -> SqlStatement:
    return SqlStatement(kind="count_rows", table=table, filters=filters)


def find_duplicates(
    table: str,
    scope_field: str,
    name_field: str,
    filters: Tuple[Tuple[str, Any], ...] = (),
) -> SqlStatement:
    """Scope/name pairs that occur more than once in the source table."""
    return SqlStatement(
        kind="find_duplicates",
        table=table,
        filters=filters,
        group_by=(scope_field, name_field),
        order_by=name_field,
    )
