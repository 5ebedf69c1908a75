"""图表计划 - SQL 路径与内存路径共用的字段解析"""

from dataclasses import dataclass, replace
from typing import Any, Dict, FrozenSet, Iterable, Iterator, List, Optional, Tuple

from chartdata.core.config import settings
from chartdata.core.constants import (
    ALLOWED_AGGREGATIONS,
    ALLOWED_FILTER_OPERATORS,
    DEFAULT_AGGREGATION,
    LABEL_SEPARATOR,
    RESOLUTION_FORMATS,
)
from chartdata.engines.errors import InvalidXAxisError, NoValidYAxisError
from chartdata.models.chart import ChartDataSource, FilterCondition
from chartdata.utils.logger import log
from chartdata.utils.security import Identifier, sanitize


@dataclass(frozen=True)
class ColumnSet:
    """一张表清洗后的列名，float_names 为其中的浮点列"""
    names: FrozenSet[str] = frozenset()
    float_names: FrozenSet[str] = frozenset()

    @classmethod
    def from_names(cls, raw_names: Iterable[Any], float_names: Iterable[Any] = ()) -> "ColumnSet":
        names = frozenset(n for n in (sanitize(r) for r in raw_names) if n)
        floats = frozenset(n for n in (sanitize(r) for r in float_names) if n in names)
        return cls(names, floats)

    def is_valid_field(self, name: Any) -> bool:
        cleaned = sanitize(name)
        return bool(cleaned) and cleaned in self.names

    def is_float(self, name: Any) -> bool:
        return sanitize(name) in self.float_names

    def __contains__(self, name: Any) -> bool:
        return self.is_valid_field(name)

    def __iter__(self) -> Iterator[str]:
        return iter(sorted(self.names))

    def __len__(self) -> int:
        return len(self.names)


@dataclass(frozen=True)
class PlanFilter:
    """通过校验的过滤条件"""
    column: Identifier
    operator: str
    value: Any

    @property
    def values(self) -> List[Any]:
        """IN 的取值列表"""
        if isinstance(self.value, (list, tuple, set)):
            return list(self.value)
        return [self.value]


@dataclass(frozen=True)
class ChartPlan:
    """ChartDataSource 校验并规范化后的形式"""
    y_axis: Tuple[Identifier, ...]
    aggregation: str
    x_axis: Optional[Identifier] = None
    resolution: Optional[str] = None
    group_by: Tuple[Identifier, ...] = ()
    filters: Tuple[PlanFilter, ...] = ()
    drill_down_label: Optional[Identifier] = None
    order_by: Optional[Identifier] = None
    descending: bool = False
    limit: int = 50
    warnings: Tuple[str, ...] = ()
    # SUM 时使用补偿求和的浮点 yAxis 列
    compensated: FrozenSet[Identifier] = frozenset()

    @property
    def grouping_keys(self) -> Tuple[Identifier, ...]:
        """分组列，xAxis 在前"""
        if self.x_axis:
            return (self.x_axis,) + self.group_by
        return self.group_by

    @property
    def output_columns(self) -> Tuple[Identifier, ...]:
        """按 SELECT 顺序排列的结果列"""
        columns = self.grouping_keys
        if self.drill_down_label:
            columns = columns + (self.drill_down_label,)
        return columns + self.y_axis


def normalize_aggregation(raw: Any) -> str:
    """SUM、AVG、COUNT、MIN 或 MAX，其他一律为 SUM"""
    candidate = str(raw or "").strip().upper()
    return candidate if candidate in ALLOWED_AGGREGATIONS else DEFAULT_AGGREGATION


def normalize_limit(raw: Any, max_rows: Optional[int] = None) -> int:
    """正整数行数上限；缺失或非正数时使用默认值"""
    try:
        limit = int(raw)
    except (TypeError, ValueError):
        limit = 0
    if limit <= 0:
        limit = settings.default_limit
    cap = max_rows or settings.max_query_rows
    return min(limit, cap)


def normalize_group_by(raw: Any) -> List[str]:
    """groupBy 统一为名称列表"""
    if not raw:
        return []
    if isinstance(raw, str):
        return [raw]
    return [g for g in raw if g]


def resolve_filters(
    filters: Iterable[FilterCondition],
    columns: Optional[ColumnSet] = None
) -> Tuple[Tuple[PlanFilter, ...], List[str]]:
    """
    保留操作符合法且字段有效的过滤条件

    Args:
        filters: 原始过滤条件
        columns: 表的列；None 时只清洗字段名（自定义模式）

    Returns:
        (保留的过滤条件, 被丢弃条件的警告)
    """
    kept: List[PlanFilter] = []
    warnings: List[str] = []

    for f in filters:
        if f.operator not in ALLOWED_FILTER_OPERATORS:
            warnings.append(f"Filter on '{f.field}' dropped: unsupported operator '{f.operator}'")
            continue
        column = Identifier(f.field)
        if not column or (columns is not None and not columns.is_valid_field(f.field)):
            warnings.append(f"Filter on '{f.field}' dropped: unknown column")
            continue
        plan_filter = PlanFilter(column=column, operator=f.operator, value=f.value)
        if f.operator == "IN" and not plan_filter.values:
            warnings.append(f"Filter on '{f.field}' dropped: IN needs at least one value")
            continue
        kept.append(plan_filter)

    return tuple(kept), warnings


def resolve_plan(source: ChartDataSource, columns: ColumnSet, max_rows: Optional[int] = None) -> ChartPlan:
    """
    按列集合校验图表数据源

    必填字段（yAxis、xAxis）无效时抛出异常；可选字段（groupBy、orderBy、
    过滤条件、下钻标签、时间粒度）无效时丢弃并记录警告。

    Args:
        source: 图表数据源
        columns: 目标表或导入数据的有效列
        max_rows: 行数上限

    Returns:
        ChartPlan
    """
    warnings: List[str] = []

    # Y 轴
    y_axis: List[Identifier] = []
    rejected: List[str] = []
    for col in source.y_axis:
        if columns.is_valid_field(col):
            ident = Identifier(col)
            if ident not in y_axis:
                y_axis.append(ident)
        else:
            rejected.append(str(col))

    # X 轴
    x_axis: Optional[Identifier] = None
    if source.x_axis:
        if not columns.is_valid_field(source.x_axis):
            raise InvalidXAxisError(source.x_axis)
        x_axis = Identifier(source.x_axis)
        if x_axis in y_axis:
            y_axis.remove(x_axis)
            warnings.append(f"yAxis '{x_axis.name}' dropped: already used as xAxis")

    if not y_axis:
        raise NoValidYAxisError(rejected)
    if rejected:
        warnings.append(f"yAxis columns dropped: {', '.join(rejected)}")

    resolution: Optional[str] = None
    if source.resolution and x_axis:
        candidate = source.resolution.strip().lower()
        if candidate in RESOLUTION_FORMATS:
            resolution = candidate
        else:
            warnings.append(f"Resolution '{source.resolution}' ignored")

    # 分组
    group_by: List[Identifier] = []
    for col in normalize_group_by(source.group_by):
        if not columns.is_valid_field(col):
            warnings.append(f"groupBy '{col}' dropped: unknown column")
            continue
        ident = Identifier(col)
        if ident == x_axis or ident in group_by or ident in y_axis:
            warnings.append(f"groupBy '{col}' dropped: column already selected")
            continue
        group_by.append(ident)

    filters, filter_warnings = resolve_filters(source.filters, columns)
    warnings.extend(filter_warnings)

    # 下钻标签：取 MAX()，不参与分组
    drill_down: Optional[Identifier] = None
    if source.drill_down_label_field:
        if not columns.is_valid_field(source.drill_down_label_field):
            warnings.append(f"drillDownLabelField '{source.drill_down_label_field}' dropped: unknown column")
        else:
            ident = Identifier(source.drill_down_label_field)
            if ident != x_axis and ident not in group_by and ident not in y_axis:
                drill_down = ident

    plan = ChartPlan(
        y_axis=tuple(y_axis),
        aggregation=normalize_aggregation(source.aggregation),
        x_axis=x_axis,
        resolution=resolution,
        group_by=tuple(group_by),
        filters=filters,
        drill_down_label=drill_down,
        descending=str(source.order_direction or "").strip().upper() == "DESC",
        limit=normalize_limit(source.limit, max_rows),
        compensated=frozenset(y for y in y_axis if columns.is_float(y.name)),
    )

    # orderBy 必须是分组查询的结果列
    order_by: Optional[Identifier] = None
    if source.order_by:
        ident = Identifier(source.order_by)
        if not columns.is_valid_field(source.order_by):
            warnings.append(f"orderBy '{source.order_by}' dropped: unknown column")
        elif ident not in plan.output_columns:
            warnings.append(f"orderBy '{source.order_by}' dropped: not a result column")
        else:
            order_by = ident

    for warning in warnings:
        log.warning(warning)

    return replace(plan, order_by=order_by, warnings=tuple(warnings))


def label_part(value: Any) -> str:
    """组合标签的一段文本；null 为空字符串"""
    if value is None:
        return ""
    return str(value)


def compose_labels(rows: List[Dict[str, Any]], plan: ChartPlan) -> List[Dict[str, Any]]:
    """
    把 "x - group1 - group2" 写入每行的 xAxis 字段

    仅在同时存在 xAxis 和 groupBy 列时生效。
    """
    if not plan.x_axis or not plan.group_by:
        return rows

    x_name = plan.x_axis.name
    labelled = []
    for row in rows:
        parts = [label_part(row.get(x_name))]
        parts.extend(label_part(row.get(g.name)) for g in plan.group_by)
        labelled.append({**row, x_name: LABEL_SEPARATOR.join(parts)})
    return labelled
