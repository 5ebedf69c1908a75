"""本地聚合器 - 对导入数据执行图表聚合"""

import math
import operator
import re
from datetime import date, datetime
from functools import lru_cache
from typing import Any, Callable, Dict, Iterable, List, Optional

import pandas as pd

from chartdata.core.constants import RESOLUTION_FORMATS
from chartdata.engines.chart_plan import ChartPlan, ColumnSet, PlanFilter, compose_labels, resolve_plan
from chartdata.engines.errors import ExecutionError
from chartdata.models.chart import ChartDataSource, ChartResult
from chartdata.utils.logger import log
from chartdata.utils.security import sanitize

COMPARATORS: Dict[str, Callable[[Any, Any], bool]] = {
    "=": operator.eq,
    "!=": operator.ne,
    ">": operator.gt,
    "<": operator.lt,
    ">=": operator.ge,
    "<=": operator.le,
}


def exact_sum(series: pd.Series) -> Any:
    """
    与 SQL 一致的 SUM

    跳过 null，全为 null 时结果为 None；浮点列用 math.fsum 求和，
    与 SQL 路径的 fsum 结果相同。
    """
    values = series.dropna()
    if values.empty:
        return None
    if pd.api.types.is_float_dtype(values.dtype):
        return math.fsum(values.tolist())
    return values.sum()


# 与 SQL 聚合函数相同的归约：跳过 null
AGGREGATORS: Dict[str, Callable[[Any], Any]] = {
    "SUM": exact_sum,
    "AVG": lambda obj: obj.mean(),
    "COUNT": lambda obj: obj.count(),
    "MIN": lambda obj: obj.min(),
    "MAX": lambda obj: obj.max(),
}


def to_python(value: Any) -> Any:
    """转为普通 Python 标量；pandas/numpy 的空值变为 None"""
    if value is None or value is pd.NA or value is pd.NaT:
        return None
    if isinstance(value, pd.Timestamp):
        return value.to_pydatetime()
    if hasattr(value, "item") and not isinstance(value, (str, bytes)):
        value = value.item()
    if isinstance(value, float) and math.isnan(value):
        return None
    return value


def bucket_value(value: Any, resolution: str) -> Any:
    """
    把日期类取值截断到指定粒度

    等同于 TRY_CAST(x AS DATE) 后再 strftime：无法解析的值为 None，
    "day" 保留 date，"month"/"year" 返回字符串。
    """
    if value is None:
        return None
    if isinstance(value, datetime):
        day = value.date()
    elif isinstance(value, date):
        day = value
    elif isinstance(value, str):
        parsed = pd.to_datetime(value.strip(), format="ISO8601", errors="coerce")
        if pd.isna(parsed):
            return None
        day = parsed.date()
    else:
        return None

    fmt = RESOLUTION_FORMATS[resolution]
    return day if fmt is None else day.strftime(fmt)


@lru_cache(maxsize=256)
def like_pattern(pattern: str) -> "re.Pattern[str]":
    """编译 SQL LIKE 模式（% 与 _ 通配符，区分大小写）"""
    parts = []
    for ch in pattern:
        if ch == "%":
            parts.append(".*")
        elif ch == "_":
            parts.append(".")
        else:
            parts.append(re.escape(ch))
    return re.compile("".join(parts), re.DOTALL)


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def coerce_pair(left: Any, right: Any):
    """
    把行内取值和过滤值转换为可比较的类型

    字符串按另一侧的类型转换，与数据库把字符串字面量转换为列类型的方式一致。
    """
    try:
        if _is_number(left) and isinstance(right, str):
            return left, float(right)
        if isinstance(left, str) and _is_number(right):
            return float(left), right
        if isinstance(left, datetime) and isinstance(right, str):
            return left, datetime.fromisoformat(right)
        if isinstance(left, date) and not isinstance(left, datetime) and isinstance(right, str):
            return left, date.fromisoformat(right[:10])
    except ValueError as e:
        raise ExecutionError(f"Could not convert '{right}' for comparison with '{left}': {e}") from e
    return left, right


class LocalAggregator:
    """SQL 路径的内存版本"""

    def normalize_rows(self, rows: Iterable[Dict[str, Any]]) -> List[Dict[str, Any]]:
        """以清洗后的列名为键；同名时保留第一个原始键"""
        normalized = []
        for row in rows:
            record: Dict[str, Any] = {}
            for key, value in row.items():
                name = sanitize(key)
                if name and name not in record:
                    record[name] = value
            normalized.append(record)
        return normalized

    def columns_of(self, records: Iterable[Dict[str, Any]]) -> ColumnSet:
        """所有记录键的并集"""
        names = set()
        for record in records:
            names.update(record.keys())
        return ColumnSet.from_names(names)

    def aggregate(
        self,
        rows: Iterable[Dict[str, Any]],
        source: ChartDataSource,
        max_rows: Optional[int] = None
    ) -> ChartResult:
        """
        对导入数据执行图表聚合

        Args:
            rows: 导入的记录
            source: 图表数据源
            max_rows: 行数上限

        Returns:
            ChartResult，行结构与 SQL 路径相同，附带被丢弃字段的警告
        """
        records = self.normalize_rows(rows)
        plan = resolve_plan(source, self.columns_of(records), max_rows)
        return ChartResult(rows=self.apply(plan, records), warnings=list(plan.warnings))

    def check_filters(self, plan: ChartPlan):
        """除 IN 外的操作符只接受标量值，数据库对列表值同样报错"""
        for f in plan.filters:
            if f.operator != "IN" and isinstance(f.value, (list, tuple, set, dict)):
                raise ExecutionError(
                    f"Operator {f.operator} on column '{f.column.name}' needs a single value, got {f.value!r}"
                )

    def matches(self, record: Dict[str, Any], f: PlanFilter) -> bool:
        """计算一个过滤条件；与 null 比较永远不成立"""
        value = record.get(f.column.name)
        if value is None:
            return False

        if f.operator == "IN":
            return any(
                candidate is not None and operator.eq(*coerce_pair(value, candidate))
                for candidate in f.values
            )
        if f.operator == "LIKE":
            if not isinstance(value, str):
                raise ExecutionError(
                    f"LIKE needs a text column, '{f.column.name}' holds {type(value).__name__} values"
                )
            if f.value is None:
                return False
            return like_pattern(str(f.value)).fullmatch(value) is not None
        if f.value is None:
            return False

        left, right = coerce_pair(value, f.value)
        try:
            return COMPARATORS[f.operator](left, right)
        except TypeError as e:
            raise ExecutionError(f"Cannot compare column '{f.column.name}' with {f.value!r}: {e}") from e

    def filter_rows(self, plan: ChartPlan, records: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
        """WHERE：xAxis 非空且满足所有过滤条件"""
        self.check_filters(plan)
        kept = []
        for record in records:
            if plan.x_axis and record.get(plan.x_axis.name) is None:
                continue
            if all(self.matches(record, f) for f in plan.filters):
                kept.append(record)
        return kept

    def build_frame(self, plan: ChartPlan, records: List[Dict[str, Any]]) -> pd.DataFrame:
        """由输出列组成、使用可空类型的 DataFrame"""
        data = {}
        for col in plan.output_columns:
            name = col.name
            if col == plan.x_axis and plan.resolution:
                values = [bucket_value(r.get(name), plan.resolution) for r in records]
            else:
                values = [r.get(name) for r in records]

            if col in plan.y_axis and all(v is None for v in values):
                data[name] = pd.array(values, dtype="Float64")
            else:
                data[name] = pd.array(values)
        return pd.DataFrame(data)

    def reduce(self, plan: ChartPlan, frame: pd.DataFrame) -> pd.DataFrame:
        """按分组列 GROUP BY 并聚合"""
        y_names = [y.name for y in plan.y_axis]
        keys = [k.name for k in plan.grouping_keys]
        reducer = AGGREGATORS[plan.aggregation]

        if plan.aggregation in ("SUM", "AVG"):
            for name in y_names:
                if not pd.api.types.is_numeric_dtype(frame[name]):
                    raise ExecutionError(f"Cannot apply {plan.aggregation} to non-numeric column '{name}'")

        if not keys:
            # 无 GROUP BY 的聚合：恒为一行
            row = {}
            if plan.drill_down_label:
                row[plan.drill_down_label.name] = frame[plan.drill_down_label.name].max()
            for name in y_names:
                row[name] = reducer(frame[name])
            return pd.DataFrame([row])

        try:
            grouped = frame.groupby(keys, dropna=False, sort=False)
            if plan.aggregation == "SUM":
                result = pd.DataFrame({name: grouped[name].agg(reducer) for name in y_names})
            else:
                result = reducer(grouped[y_names])
            if plan.drill_down_label:
                result[plan.drill_down_label.name] = grouped[plan.drill_down_label.name].max()
        except TypeError as e:
            raise ExecutionError(f"Cannot aggregate columns with mixed value types: {e}") from e
        return result.reset_index()

    def order(self, plan: ChartPlan, result: pd.DataFrame) -> pd.DataFrame:
        """先按请求的列排序，再按分组列排序"""
        by: List[str] = []
        ascending: List[bool] = []
        if plan.order_by:
            by.append(plan.order_by.name)
            ascending.append(not plan.descending)
        for key in plan.grouping_keys:
            if key.name not in by:
                by.append(key.name)
                ascending.append(True)
        if not by or result.empty:
            return result
        try:
            return result.sort_values(by=by, ascending=ascending, na_position="last", kind="mergesort")
        except TypeError as e:
            raise ExecutionError(f"Cannot order columns {', '.join(by)} with mixed value types: {e}") from e

    def apply(self, plan: ChartPlan, records: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
        """在规范化记录上执行校验后的计划"""
        filtered = self.filter_rows(plan, records)
        frame = self.build_frame(plan, filtered)
        result = self.reduce(plan, frame)

        columns = [c.name for c in plan.output_columns]
        result = self.order(plan, result[columns]).head(plan.limit)

        rows = [
            {name: to_python(value) for name, value in zip(columns, values)}
            for values in result.itertuples(index=False, name=None)
        ]
        log.info(f"本地聚合: 输入 {len(records)} 行，输出 {len(rows)} 行")
        return compose_labels(rows, plan)


# 全局单例
_local_aggregator = None


def get_local_aggregator() -> LocalAggregator:
    """获取 LocalAggregator 单例"""
    global _local_aggregator
    if _local_aggregator is None:
        _local_aggregator = LocalAggregator()
    return _local_aggregator
