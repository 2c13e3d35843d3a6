"""
Deferred query plans over a ViolationDataset.

A plan is an immutable chain of stages compiled to one DuckDB statement:

    ds.query()
      .row_filter(col("issue_date").contains("2024"))      # WHERE
      .group("state", "plate")                             # GROUP BY
      .aggregate(tickets=count(), amount_owed=sum_of("amount_due"))
      .having_filter(col("amount_owed") >= 350)             # HAVING

Nothing runs until collect() or row_count(). Row filters and aggregate
filters are separate operations: a row filter placed after an aggregation is
rejected instead of silently filtering the wrong relation.
"""

import logging
import re
from dataclasses import dataclass, field, replace
from typing import Any, FrozenSet, Iterable, List, Optional, Sequence, Tuple

import duckdb
import pandas as pd

from .dates import month_rule_sql, month_sql
from .errors import QueryError

logger = logging.getLogger(__name__)

_IDENTIFIER = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


def quote_identifier(name: str) -> str:
    if not isinstance(name, str) or not _IDENTIFIER.match(name):
        raise QueryError(f"Invalid column name: {name!r}")
    return f'"{name}"'


# ============ PREDICATES ============

@dataclass(frozen=True)
class Predicate:
    """A SQL boolean expression with its bound parameters and referenced columns."""

    sql: str
    params: Tuple[Any, ...] = ()
    columns: FrozenSet[str] = frozenset()

    def __and__(self, other: "Predicate") -> "Predicate":
        return Predicate(f"({self.sql}) AND ({other.sql})", self.params + other.params, self.columns | other.columns)

    def __or__(self, other: "Predicate") -> "Predicate":
        return Predicate(f"({self.sql}) OR ({other.sql})", self.params + other.params, self.columns | other.columns)

    def __invert__(self) -> "Predicate":
        return Predicate(f"NOT ({self.sql})", self.params, self.columns)


class Column:
    """Column reference used to build predicates: col("amount_due") > 0."""

    def __init__(self, name: str):
        self.name = name
        self.quoted = quote_identifier(name)

    def _predicate(self, sql: str, params: Sequence[Any] = ()) -> Predicate:
        return Predicate(sql, tuple(params), frozenset({self.name}))

    def _compare(self, op: str, value: Any) -> Predicate:
        return self._predicate(f"{self.quoted} {op} ?", (value,))

    def __eq__(self, value):  # type: ignore[override]
        # "= NULL" never matches; None means IS NULL
        if value is None:
            return self.is_null()
        return self._compare("=", value)

    def __ne__(self, value):  # type: ignore[override]
        if value is None:
            return self.not_null()
        return self._compare("<>", value)

    def __gt__(self, value):
        return self._compare(">", value)

    def __ge__(self, value):
        return self._compare(">=", value)

    def __lt__(self, value):
        return self._compare("<", value)

    def __le__(self, value):
        return self._compare("<=", value)

    __hash__ = None

    def contains(self, substring: str) -> Predicate:
        """Substring match on the text form of the column."""
        return self._predicate(f"contains(CAST({self.quoted} AS VARCHAR), ?)", (substring,))

    def is_in(self, values: Iterable[Any]) -> Predicate:
        values = tuple(values)
        if not values:
            return self._predicate("FALSE")
        placeholders = ", ".join("?" for _ in values)
        return self._predicate(f"{self.quoted} IN ({placeholders})", values)

    def not_in(self, values: Iterable[Any]) -> Predicate:
        values = tuple(values)
        if not values:
            return self._predicate(f"{self.quoted} IS NOT NULL")
        placeholders = ", ".join("?" for _ in values)
        return self._predicate(f"{self.quoted} NOT IN ({placeholders})", values)

    def is_null(self) -> Predicate:
        return self._predicate(f"{self.quoted} IS NULL")

    def not_null(self) -> Predicate:
        return self._predicate(f"{self.quoted} IS NOT NULL")


def col(name: str) -> Column:
    return Column(name)


# ============ REDUCERS ============

@dataclass(frozen=True)
class Reducer:
    kind: str
    column: Optional[str] = None

    def sql(self) -> str:
        if self.kind == "count":
            return "COUNT(*)"
        if self.kind == "sum":
            # NULLs contribute nothing; an all-NULL or empty group sums to 0
            return f"COALESCE(SUM({quote_identifier(self.column)}), 0)"
        if self.kind == "count_distinct":
            return f"COUNT(DISTINCT {quote_identifier(self.column)})"
        raise QueryError(f"Unknown reducer: {self.kind}")


def count() -> Reducer:
    return Reducer("count")


def sum_of(column: str) -> Reducer:
    return Reducer("sum", column)


def count_distinct(column: str) -> Reducer:
    return Reducer("count_distinct", column)


# ============ STAGES ============

@dataclass(frozen=True)
class _Filter:
    predicate: Predicate


@dataclass(frozen=True)
class _Select:
    columns: Tuple[str, ...]


@dataclass(frozen=True)
class _WithMonth:
    column: str


@dataclass(frozen=True)
class _Aggregate:
    keys: Tuple[str, ...]
    reducers: Tuple[Tuple[str, Reducer], ...]


def _where(predicates: List[Predicate]) -> Tuple[str, List[Any]]:
    if not predicates:
        return "", []
    clause = " AND ".join(f"({p.sql})" for p in predicates)
    params: List[Any] = []
    for p in predicates:
        params.extend(p.params)
    return f" WHERE {clause}", params


# ============ PLANS ============

@dataclass(frozen=True)
class Query:
    """Immutable deferred plan. Every builder method returns a new plan."""

    dataset: Any
    columns: Tuple[str, ...]
    stages: Tuple[Any, ...] = ()
    aggregated: bool = False
    group_keys: Tuple[str, ...] = ()
    sort_keys: Tuple[str, ...] = ()
    descending: bool = False

    def _require(self, names: Iterable[str], where: str):
        missing = [n for n in names if n not in self.columns]
        if missing:
            raise QueryError(f"Unknown column(s) {missing} in {where}; available: {list(self.columns)}")

    def _add_filters(self, predicates: Sequence[Predicate], where: str) -> "Query":
        stages = self.stages
        for predicate in predicates:
            if not isinstance(predicate, Predicate):
                raise QueryError(f"{where} expects predicates built with col(), got {predicate!r}")
            self._require(sorted(predicate.columns), where)
            stages = stages + (_Filter(predicate),)
        return replace(self, stages=stages)

    def row_filter(self, *predicates: Predicate) -> "Query":
        """Keep raw rows matching every predicate (WHERE)."""
        if self.aggregated:
            raise QueryError("row_filter() applies to raw rows; use having_filter() after aggregate()")
        return self._add_filters(predicates, "row_filter")

    def having_filter(self, *predicates: Predicate) -> "Query":
        """Keep aggregated rows matching every predicate (HAVING)."""
        if not self.aggregated:
            raise QueryError("having_filter() applies to aggregated rows; use row_filter() before aggregate()")
        return self._add_filters(predicates, "having_filter")

    def filter(self, *predicates: Predicate) -> "Query":
        """Row filter before the first aggregation, aggregate filter after it."""
        if self.aggregated:
            return self.having_filter(*predicates)
        return self.row_filter(*predicates)

    def select(self, *columns: str) -> "Query":
        if not columns:
            raise QueryError("select() needs at least one column")
        self._require(columns, "select")
        dropped_sort = [k for k in self.sort_keys if k not in columns]
        if dropped_sort:
            raise QueryError(f"select() drops sort key(s) {dropped_sort}")
        return replace(self, stages=self.stages + (_Select(tuple(columns)),), columns=tuple(columns))

    def with_month(self, column: str = "issue_date") -> "Query":
        """Add `month` and `month_rule` resolved from an issue date column."""
        self._require([column], "with_month")
        clashes = [c for c in ("month", "month_rule") if c in self.columns]
        if clashes:
            raise QueryError(f"with_month() would overwrite existing column(s) {clashes}")
        return replace(
            self,
            stages=self.stages + (_WithMonth(column),),
            columns=self.columns + ("month", "month_rule"),
        )

    def group(self, *keys: str) -> "GroupedQuery":
        self._require(keys, "group")
        return GroupedQuery(self, tuple(keys))

    def sort(self, *keys: str, descending: bool = False) -> "Query":
        """Order the materialized result (stable). Replaces any earlier sort."""
        if not keys:
            raise QueryError("sort() needs at least one key")
        self._require(keys, "sort")
        return replace(self, sort_keys=tuple(keys), descending=descending)

    # ------------ compilation ------------

    def to_sql(self) -> Tuple[str, List[Any]]:
        """Compile the plan into a single statement and its parameters."""
        sql = f"SELECT * FROM {self.dataset.relation_sql()}"
        params: List[Any] = []
        pending: List[Predicate] = []

        for i, stage in enumerate(self.stages):
            if isinstance(stage, _Filter):
                pending.append(stage.predicate)
                continue

            source = f"({sql}) AS stage_{i}"
            where_sql, where_params = _where(pending)
            pending = []

            if isinstance(stage, _Select):
                projection = ", ".join(quote_identifier(c) for c in stage.columns)
                sql = f"SELECT {projection} FROM {source}{where_sql}"
            elif isinstance(stage, _WithMonth):
                quoted = quote_identifier(stage.column)
                sql = (
                    f'SELECT *, {month_sql(quoted)} AS "month", {month_rule_sql(quoted)} AS "month_rule" '
                    f"FROM {source}{where_sql}"
                )
            elif isinstance(stage, _Aggregate):
                keys = [quote_identifier(k) for k in stage.keys]
                outputs = keys + [f"{reducer.sql()} AS {quote_identifier(name)}" for name, reducer in stage.reducers]
                group_sql = f" GROUP BY {', '.join(keys)}" if keys else ""
                sql = f"SELECT {', '.join(outputs)} FROM {source}{where_sql}{group_sql}"
            params = params + where_params

        if pending:
            where_sql, where_params = _where(pending)
            sql = f"SELECT * FROM ({sql}) AS filtered{where_sql}"
            params = params + where_params

        order = [quote_identifier(k) for k in self.group_keys if k in self.columns]
        if self.aggregated and order:
            sql = f"{sql} ORDER BY {', '.join(order)}"
        return sql, params

    # ------------ terminal operations ------------

    def _execute(self, sql: str, params: List[Any]):
        logger.debug(f"Executing plan: {sql} | params={params}")
        con = self.dataset.connect()
        try:
            return con.execute(sql, params).fetchdf()
        except duckdb.Error as e:
            raise QueryError(f"Query failed: {e}") from e
        finally:
            con.close()

    def collect(self) -> pd.DataFrame:
        """Run the plan and materialize the result."""
        sql, params = self.to_sql()
        frame = self._execute(sql, params)
        if self.sort_keys:
            frame = frame.sort_values(
                list(self.sort_keys),
                ascending=not self.descending,
                kind="stable",
                ignore_index=True,
            )
        return frame

    def row_count(self) -> int:
        """Number of rows the plan produces, without materializing them."""
        sql, params = self.to_sql()
        frame = self._execute(f"SELECT COUNT(*) AS n FROM ({sql}) AS counted", params)
        return int(frame["n"].iloc[0])


@dataclass(frozen=True)
class GroupedQuery:
    """A plan waiting for its reducers."""

    query: Query
    keys: Tuple[str, ...] = field(default_factory=tuple)

    def aggregate(self, **reducers: Reducer) -> Query:
        if not reducers:
            raise QueryError("aggregate() needs at least one reducer")
        for name, reducer in reducers.items():
            quote_identifier(name)
            if name in self.keys:
                raise QueryError(f"Reducer name {name!r} collides with a group key")
            if not isinstance(reducer, Reducer):
                raise QueryError(f"aggregate() expects reducers, got {reducer!r} for {name!r}")
            if reducer.column is not None:
                self.query._require([reducer.column], "aggregate")

        stage = _Aggregate(self.keys, tuple(reducers.items()))
        return replace(
            self.query,
            stages=self.query.stages + (stage,),
            columns=self.keys + tuple(reducers),
            aggregated=True,
            group_keys=self.keys,
            sort_keys=(),
            descending=False,
        )
