from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date, datetime, time, timezone
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple, Union

import sqlalchemy as sa
from sqlalchemy.sql.elements import ColumnElement
from sqlalchemy.sql.selectable import FromClause, Select

from report_engine.schemas.reporting import (
    ReportAggregateFn,
    ReportColumn,
    ReportColumnType,
    ReportDefinition,
    ReportFilter,
    ReportFilterOperator,
    ReportSortDirection,
)
from report_engine.services.report_catalog import (
    EntityDefinition,
    EntityField,
    resolve_entity,
    resolve_field,
    resolve_relation,
)
from report_engine.services.report_errors import (
    DefinitionError,
    MalformedFilterValueError,
    UnknownFieldError,
    UnsupportedOperatorError,
)

logger = logging.getLogger(__name__)

FIELD_SEPARATOR = "."

RangeBound = Union[date, datetime]


@dataclass(frozen=True)
class ResolvedDateRange:
    """Inclusive UTC bounds applied to a report's date field."""

    start: datetime
    end: datetime

    @classmethod
    def from_bounds(cls, start: RangeBound, end: RangeBound) -> "ResolvedDateRange":
        lower = normalize_bound(start, end_of_day=False)
        upper = normalize_bound(end, end_of_day=True)
        if lower > upper:
            raise DefinitionError("The date range start must not be after its end.")
        return cls(start=lower, end=upper)

    def as_parameters(self) -> Dict[str, str]:
        return {"start": self.start.isoformat(), "end": self.end.isoformat()}


def normalize_bound(value: RangeBound, *, end_of_day: bool) -> datetime:
    """Convert a date or datetime into an aware UTC datetime; bare dates cover the whole day."""
    if isinstance(value, datetime):
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)
    boundary = time.max if end_of_day else time.min
    return datetime.combine(value, boundary, tzinfo=timezone.utc)


@dataclass
class PlannedColumn:
    column: ReportColumn
    key: str
    label: str
    expression: ColumnElement


@dataclass
class ReportQueryPlan:
    primary: EntityDefinition
    columns: List[PlannedColumn]
    source: FromClause
    predicates: List[ColumnElement] = field(default_factory=list)
    group_by: List[ColumnElement] = field(default_factory=list)
    order_by: List[ColumnElement] = field(default_factory=list)
    summary_columns: List[PlannedColumn] = field(default_factory=list)
    grouped: bool = False

    @property
    def labels(self) -> List[str]:
        return [planned.label for planned in self.columns]

    def rows_statement(self, *, offset: Optional[int] = None, limit: Optional[int] = None) -> Select:
        statement = self._projected().order_by(*self.order_by)
        if limit is not None:
            statement = statement.limit(limit)
        if offset:
            statement = statement.offset(offset)
        return statement

    def count_statement(self) -> Select:
        if self.grouped:
            return sa.select(sa.func.count()).select_from(self._projected().subquery())
        return sa.select(sa.func.count()).select_from(self.source).where(*self.predicates)

    def aggregate_statement(self) -> Optional[Select]:
        """Summary row over every matching record, computed apart from the grouped listing."""
        if not self.group_by or not self.summary_columns:
            return None
        return (
            sa.select(*[planned.expression.label(planned.key) for planned in self.summary_columns])
            .select_from(self.source)
            .where(*self.predicates)
        )

    def _projected(self) -> Select:
        statement = (
            sa.select(*[planned.expression.label(planned.key) for planned in self.columns])
            .select_from(self.source)
            .where(*self.predicates)
        )
        if self.group_by:
            statement = statement.group_by(*self.group_by)
        elif self.grouped:
            # An ungrouped aggregate still yields one row over an empty set.
            statement = statement.having(sa.func.count() > 0)
        return statement


class ReportQueryPlanner:
    """Validate a report definition against the entity catalog and build its query plan."""

    def __init__(
        self,
        definition: ReportDefinition,
        *,
        date_range: Optional[ResolvedDateRange] = None,
        ad_hoc_filters: Optional[Mapping[str, Any]] = None,
    ) -> None:
        self.definition = definition
        self.date_range = date_range
        self.ad_hoc_filters = dict(ad_hoc_filters or {})
        self.primary: Optional[EntityDefinition] = None
        self.joined: Dict[str, Tuple[EntityDefinition, sa.Alias]] = {}

    def build(self) -> ReportQueryPlan:
        self.primary = resolve_entity(self.definition.primary_entity)
        source = self._build_joins()

        visible = [column for column in self.definition.columns if column.visible]
        if not visible:
            raise DefinitionError("Choose at least one visible column for the report.")

        group_keys = self._build_grouping()
        grouped = bool(group_keys) or any(column.aggregation for column in visible)

        columns: List[PlannedColumn] = []
        summary_columns: List[PlannedColumn] = []
        label_usage: Dict[str, int] = {}
        taken_labels: set[str] = set()
        declared_labels = {column.label or "column" for column in visible}
        key_expressions = {self._group_key_name(expr) for expr in group_keys}
        for index, column in enumerate(visible):
            raw, _ = self._resolve_reference(column.field)
            expression = self._wrap_expression(raw, column.aggregation)
            if grouped and column.aggregation is None and self._group_key_name(raw) not in key_expressions:
                expression = sa.func.min(raw)
            planned = PlannedColumn(
                column=column,
                key=f"col_{index}",
                label=self._dedupe_alias(column.label, label_usage, taken_labels, declared_labels),
                expression=expression,
            )
            columns.append(planned)
            if column.aggregation is not None:
                summary_columns.append(planned)

        predicates = self._build_predicates()
        order_by = self._build_ordering(columns, group_keys, grouped)

        return ReportQueryPlan(
            primary=self.primary,
            columns=columns,
            source=source,
            predicates=predicates,
            group_by=group_keys,
            order_by=order_by,
            summary_columns=summary_columns,
            grouped=grouped,
        )

    def _build_joins(self) -> FromClause:
        assert self.primary is not None
        source: FromClause = self.primary.table
        for relation_name in self.definition.join_entities:
            if relation_name in self.joined:
                continue
            relation = resolve_relation(self.primary.entity, relation_name)
            target = resolve_entity(relation.target)
            alias = target.table.alias(f"rel_{relation.name}")
            source = source.outerjoin(
                alias,
                alias.c[relation.target_key] == self.primary.table.c[relation.foreign_key],
            )
            self.joined[relation_name] = (target, alias)
        return source

    def _resolve_reference(self, reference: str) -> Tuple[ColumnElement, EntityField]:
        assert self.primary is not None
        if FIELD_SEPARATOR in reference:
            prefix, field_name = reference.split(FIELD_SEPARATOR, 1)
            if prefix == self.primary.entity.value:
                resolved = resolve_field(self.primary.entity, field_name)
                return self.primary.table.c[resolved.column], resolved
            joined = self.joined.get(prefix)
            if joined is None:
                raise UnknownFieldError(
                    f"Field '{reference}' references '{prefix}', which is not joined to this report."
                )
            target, alias = joined
            resolved = resolve_field(target.entity, field_name)
            return alias.c[resolved.column], resolved

        resolved = resolve_field(self.primary.entity, reference)
        return self.primary.table.c[resolved.column], resolved

    def _wrap_expression(
        self, expression: ColumnElement, aggregate: Optional[ReportAggregateFn]
    ) -> ColumnElement:
        if aggregate is None:
            return expression
        if aggregate == ReportAggregateFn.COUNT:
            return sa.func.count(expression)
        if aggregate == ReportAggregateFn.SUM:
            return sa.func.sum(expression)
        if aggregate == ReportAggregateFn.AVG:
            return sa.func.avg(expression)
        if aggregate == ReportAggregateFn.MIN:
            return sa.func.min(expression)
        if aggregate == ReportAggregateFn.MAX:
            return sa.func.max(expression)
        raise DefinitionError(f"The {aggregate} aggregate is not supported.")

    def _build_grouping(self) -> List[ColumnElement]:
        assert self.primary is not None
        keys: List[ColumnElement] = []
        seen: set[str] = set()
        for grouping in self.definition.group_by:
            reference = grouping.field
            if FIELD_SEPARATOR in reference:
                prefix, _ = reference.split(FIELD_SEPARATOR, 1)
                if prefix != self.primary.entity.value:
                    raise DefinitionError(
                        f"Grouping on joined field '{reference}' is not supported; "
                        "group by a field of the primary entity."
                    )
            expression, _ = self._resolve_reference(reference)
            name = self._group_key_name(expression)
            if name in seen:
                continue
            seen.add(name)
            keys.append(expression)
        return keys

    def _build_predicates(self) -> List[ColumnElement]:
        predicates: List[ColumnElement] = []

        if self.date_range is not None:
            if self.definition.date_field:
                expression, _ = self._resolve_reference(self.definition.date_field)
                predicates.append(expression >= self.date_range.start)
                predicates.append(expression <= self.date_range.end)
            else:
                logger.debug(
                    "Ignoring date range for report '%s' without a date field", self.definition.name
                )

        for report_filter in self.definition.filters:
            predicates.append(self._filter_predicate(report_filter))

        for reference, value in self.ad_hoc_filters.items():
            expression, resolved = self._resolve_reference(reference)
            if isinstance(value, (list, tuple, dict)):
                raise MalformedFilterValueError(
                    f"Ad-hoc filter on '{reference}' must be a single value."
                )
            if value is None:
                predicates.append(expression.is_(None))
            else:
                predicates.append(expression == self._coerce(value, resolved, reference))

        return predicates

    def _filter_predicate(self, report_filter: ReportFilter) -> ColumnElement:
        operator = self._parse_operator(report_filter)
        expression, resolved = self._resolve_reference(report_filter.field)
        value = report_filter.value
        reference = report_filter.field

        if operator == ReportFilterOperator.BETWEEN:
            if not isinstance(value, (list, tuple)) or len(value) != 2:
                raise MalformedFilterValueError(
                    f"Filter '{report_filter.id}' uses 'between' and needs exactly two values."
                )
            low, high = (self._coerce(item, resolved, reference) for item in value)
            return expression.between(low, high)

        if operator in (ReportFilterOperator.IN, ReportFilterOperator.NOT_IN):
            if not isinstance(value, (list, tuple)) or not value:
                raise MalformedFilterValueError(
                    f"Filter '{report_filter.id}' uses '{operator.value}' and needs a non-empty list."
                )
            items = [self._coerce(item, resolved, reference) for item in value]
            if operator == ReportFilterOperator.IN:
                return expression.in_(items)
            return expression.not_in(items)

        if isinstance(value, (list, tuple, dict)):
            raise MalformedFilterValueError(
                f"Filter '{report_filter.id}' uses '{operator.value}' and needs a single value."
            )

        if value is None:
            if operator == ReportFilterOperator.EQ:
                return expression.is_(None)
            if operator == ReportFilterOperator.NEQ:
                return expression.is_not(None)
            raise MalformedFilterValueError(
                f"Filter '{report_filter.id}' uses '{operator.value}' and needs a value."
            )

        if operator == ReportFilterOperator.LIKE:
            return expression.contains(str(value), autoescape=True)

        literal = self._coerce(value, resolved, reference)
        if operator == ReportFilterOperator.EQ:
            return expression == literal
        if operator == ReportFilterOperator.NEQ:
            return expression != literal
        if operator == ReportFilterOperator.GT:
            return expression > literal
        if operator == ReportFilterOperator.GTE:
            return expression >= literal
        if operator == ReportFilterOperator.LT:
            return expression < literal
        if operator == ReportFilterOperator.LTE:
            return expression <= literal
        raise UnsupportedOperatorError(f"Unsupported filter operator '{operator.value}'.")

    def _parse_operator(self, report_filter: ReportFilter) -> ReportFilterOperator:
        try:
            return ReportFilterOperator(report_filter.operator)
        except ValueError as exc:
            raise UnsupportedOperatorError(
                f"Filter '{report_filter.id}' uses unsupported operator '{report_filter.operator}'."
            ) from exc

    def _coerce(self, value: Any, resolved: EntityField, reference: str) -> Any:
        if resolved.type == ReportColumnType.DATE:
            if isinstance(value, (date, datetime)):
                return normalize_bound(value, end_of_day=False)
            if isinstance(value, str):
                try:
                    parsed = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
                except ValueError as exc:
                    raise MalformedFilterValueError(
                        f"Value '{value}' for '{reference}' is not an ISO date."
                    ) from exc
                return normalize_bound(parsed, end_of_day=False)
            raise MalformedFilterValueError(f"Value for '{reference}' must be an ISO date string.")

        if resolved.type == ReportColumnType.NUMBER:
            if isinstance(value, bool):
                raise MalformedFilterValueError(f"Value for '{reference}' must be numeric.")
            if isinstance(value, (int, float)):
                return value
            if isinstance(value, str):
                try:
                    return int(value)
                except ValueError:
                    pass
                try:
                    return float(value)
                except ValueError as exc:
                    raise MalformedFilterValueError(
                        f"Value '{value}' for '{reference}' is not numeric."
                    ) from exc
            raise MalformedFilterValueError(f"Value for '{reference}' must be numeric.")

        if resolved.type == ReportColumnType.BOOLEAN:
            if isinstance(value, bool):
                return value
            raise MalformedFilterValueError(f"Value for '{reference}' must be true or false.")

        if isinstance(value, (str, int, float)):
            return str(value)
        raise MalformedFilterValueError(f"Value for '{reference}' must be a string.")

    def _build_ordering(
        self,
        columns: Sequence[PlannedColumn],
        group_keys: Sequence[ColumnElement],
        grouped: bool,
    ) -> List[ColumnElement]:
        assert self.primary is not None
        sorted_columns = sorted(
            (
                (planned.column.sort_priority, index, planned)
                for index, planned in enumerate(columns)
                if planned.column.sort_order is not None
            ),
            key=lambda entry: (entry[0] is None, entry[0] or 0, entry[1]),
        )

        ordering: List[ColumnElement] = []
        for _, _, planned in sorted_columns:
            if planned.column.sort_order == ReportSortDirection.DESC:
                ordering.append(planned.expression.desc())
            else:
                ordering.append(planned.expression.asc())

        if grouped:
            directions = {
                self._group_key_name(self._resolve_reference(grouping.field)[0]): grouping.order
                for grouping in self.definition.group_by
            }
            for key in group_keys:
                if directions.get(self._group_key_name(key)) == ReportSortDirection.DESC:
                    ordering.append(key.desc())
                else:
                    ordering.append(key.asc())
        else:
            ordering.append(self.primary.table.c[self.primary.primary_key].asc())
        return ordering

    @staticmethod
    def _group_key_name(expression: ColumnElement) -> str:
        table = getattr(expression, "table", None)
        return f"{getattr(table, 'name', '')}.{getattr(expression, 'key', '')}"

    @staticmethod
    def _dedupe_alias(base: str, usage: Dict[str, int], taken: set[str], declared: set[str]) -> str:
        """Return a label no other column uses; suffixes skip labels declared elsewhere in the report."""
        candidate = base or "column"
        if candidate not in taken:
            taken.add(candidate)
            return candidate
        count = usage.get(candidate, 0)
        while True:
            count += 1
            renamed = f"{candidate}_{count}"
            if renamed not in taken and renamed not in declared:
                break
        usage[candidate] = count
        taken.add(renamed)
        return renamed


def build_query_plan(
    definition: ReportDefinition,
    *,
    date_range: Optional[ResolvedDateRange] = None,
    ad_hoc_filters: Optional[Mapping[str, Any]] = None,
) -> ReportQueryPlan:
    return ReportQueryPlanner(
        definition, date_range=date_range, ad_hoc_filters=ad_hoc_filters
    ).build()


__all__ = [
    "FIELD_SEPARATOR",
    "PlannedColumn",
    "ReportQueryPlan",
    "ReportQueryPlanner",
    "ResolvedDateRange",
    "build_query_plan",
    "normalize_bound",
]
