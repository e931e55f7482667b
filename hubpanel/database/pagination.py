"""
Filtered, ordered and paginated SELECT synthesis
"""

import math
from dataclasses import dataclass
from typing import Any, List, Optional, Sequence, Tuple

from .errors import InvalidRequestError
from .models import DataFilter, FILTER_OPERATORS, TableDataOptions
from .quoting import Dialect, escape_pyformat

PLACEHOLDER = "%s"


@dataclass
class PageQuery:
    """COUNT and bounded SELECT sharing one WHERE clause"""
    count_sql: str
    count_params: List[Any]
    data_sql: str
    data_params: List[Any]


def _ident(dialect: Dialect, name: str) -> str:
    return escape_pyformat(dialect.quote_ident(name))


def build_where_clause(dialect: Dialect, filters: Sequence[DataFilter]) -> Tuple[str, List[Any]]:
    """AND together one predicate per filter; only value operators bind a parameter"""
    clauses = []
    params: List[Any] = []

    for f in filters:
        if f.operator not in FILTER_OPERATORS:
            raise InvalidRequestError(f"Unsupported filter operator: {f.operator!r}")

        column = _ident(dialect, f.column)
        if not f.binds_value:
            clauses.append(f"{column} {f.operator}")
            continue

        if f.value is None:
            raise InvalidRequestError(
                f"Filter on column {f.column!r} with operator {f.operator} requires a value"
            )
        params.append(f.value)
        clauses.append(f"{column} {dialect.comparison_operator(f.operator)} {PLACEHOLDER}")

    if not clauses:
        return "", params
    return "WHERE " + " AND ".join(clauses), params


def build_order_clause(dialect: Dialect, order_by: Optional[str], order_dir: str = "ASC") -> str:
    if not order_by:
        return ""
    direction = "DESC" if str(order_dir).upper() == "DESC" else "ASC"
    return f"ORDER BY {_ident(dialect, order_by)} {direction}"


def build_page_query(dialect: Dialect, qualified_table: str, options: TableDataOptions) -> PageQuery:
    """Build the COUNT and page SELECT for a table

    `qualified_table` must already be quoted. Page and page size are assumed
    to be positive; callers clamp them.
    """
    where_sql, params = build_where_clause(dialect, options.filters)
    order_sql = build_order_clause(dialect, options.order_by, options.order_dir)
    table_sql = escape_pyformat(qualified_table)
    offset = (options.page - 1) * options.page_size

    count_sql = " ".join(part for part in (
        f"SELECT COUNT(*) AS total FROM {table_sql}", where_sql) if part)
    data_sql = " ".join(part for part in (
        f"SELECT * FROM {table_sql}", where_sql, order_sql,
        f"LIMIT {PLACEHOLDER} OFFSET {PLACEHOLDER}") if part)

    return PageQuery(
        count_sql=count_sql,
        count_params=list(params),
        data_sql=data_sql,
        data_params=list(params) + [options.page_size, offset],
    )


def total_pages(total: int, page_size: int) -> int:
    if page_size <= 0:
        return 0
    return math.ceil(total / page_size)
