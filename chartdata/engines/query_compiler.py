"""查询编译器 - 将图表数据源编译为参数化 SQL"""

from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple

from chartdata.core.constants import RESOLUTION_FORMATS
from chartdata.engines.chart_plan import ChartPlan, ColumnSet, PlanFilter, resolve_plan
from chartdata.models.chart import ChartDataSource
from chartdata.utils.logger import log
from chartdata.utils.security import Identifier


@dataclass(frozen=True)
class TableRef:
    """从目录解析出的表"""
    schema: str
    table: str

    @property
    def qualified(self) -> str:
        """清洗并加引号的 schema.table"""
        schema = Identifier(self.schema)
        table = Identifier(self.table)
        if schema:
            return f"{schema.quoted}.{table.quoted}"
        return table.quoted


@dataclass(frozen=True)
class CompiledQuery:
    """SQL 文本及其绑定参数"""
    sql: str
    parameters: Tuple[Tuple[str, Any], ...] = ()
    plan: Optional[ChartPlan] = None

    @property
    def params(self) -> Dict[str, Any]:
        """供驱动使用的 名称 -> 值 参数映射"""
        return dict(self.parameters)


class QueryCompiler:
    """把 ChartDataSource 编译为单表聚合查询"""

    PARAM_PREFIX = "filter"

    def compile(
        self,
        source: ChartDataSource,
        columns: ColumnSet,
        table: Optional[TableRef] = None,
        max_rows: Optional[int] = None
    ) -> CompiledQuery:
        """
        编译图表数据源

        Args:
            source: 图表数据源
            columns: 已解析表的列
            table: 已解析的表；默认为默认 schema 下的 source.table
            max_rows: LIMIT 上限

        Returns:
            CompiledQuery

        Raises:
            ValidationError: yAxis 或 xAxis 与表不匹配
        """
        plan = resolve_plan(source, columns, max_rows)
        table = table or TableRef(schema="", table=source.table or "")
        sql, parameters = self.build_sql(plan, table)
        log.debug(f"编译后的 SQL: {sql}")
        return CompiledQuery(sql=sql, parameters=tuple(parameters), plan=plan)

    def aggregate_function(self, plan: ChartPlan, column: Identifier) -> str:
        """浮点列的 SUM 使用 fsum（补偿求和），与内存路径的 math.fsum 一致"""
        if plan.aggregation == "SUM" and column in plan.compensated:
            return "fsum"
        return plan.aggregation

    def build_x_axis_expr(self, plan: ChartPlan) -> str:
        """xAxis 表达式，SELECT 与 GROUP BY 共用"""
        column = plan.x_axis.quoted
        if not plan.resolution:
            return column
        fmt = RESOLUTION_FORMATS[plan.resolution]
        as_date = f"TRY_CAST({column} AS DATE)"
        if fmt is None:
            return as_date
        return f"strftime({as_date}, '{fmt}')"

    def build_sql(self, plan: ChartPlan, table: TableRef) -> Tuple[str, List[Tuple[str, Any]]]:
        """为校验后的计划生成 SQL 文本和参数"""
        select_parts: List[str] = []
        group_by_exprs: List[str] = []
        conditions: List[str] = []
        params: List[Tuple[str, Any]] = []

        if plan.x_axis:
            x_expr = self.build_x_axis_expr(plan)
            select_parts.append(f"{x_expr} AS {plan.x_axis.quoted}")
            group_by_exprs.append(x_expr)
            conditions.append(f"{plan.x_axis.quoted} IS NOT NULL")

        for col in plan.group_by:
            select_parts.append(col.quoted)
            group_by_exprs.append(col.quoted)

        if plan.drill_down_label:
            label = plan.drill_down_label.quoted
            select_parts.append(f"MAX({label}) AS {label}")

        for col in plan.y_axis:
            select_parts.append(f"{self.aggregate_function(plan, col)}({col.quoted}) AS {col.quoted}")

        for index, f in enumerate(plan.filters):
            clause, clause_params = self.build_filter(f, index)
            conditions.append(clause)
            params.extend(clause_params)

        sql_parts = [
            f"SELECT {', '.join(select_parts)}",
            f"FROM {table.qualified}",
        ]
        if conditions:
            sql_parts.append(f"WHERE {' AND '.join(conditions)}")
        if group_by_exprs:
            sql_parts.append(f"GROUP BY {', '.join(group_by_exprs)}")

        order_clause = self.build_order_clause(plan)
        if order_clause:
            sql_parts.append(order_clause)
        sql_parts.append(f"LIMIT {int(plan.limit)}")

        return " ".join(sql_parts), params

    def build_order_clause(self, plan: ChartPlan) -> str:
        """
        按结果列位置 ORDER BY

        请求的排序列在前，分组列按升序跟随，保证并列值和 LIMIT 的结果确定。
        """
        positions = {col: i + 1 for i, col in enumerate(plan.output_columns)}
        order_parts: List[str] = []
        seen = set()

        if plan.order_by:
            direction = "DESC" if plan.descending else "ASC"
            order_parts.append(f"{positions[plan.order_by]} {direction} NULLS LAST")
            seen.add(plan.order_by)

        for key in plan.grouping_keys:
            if key not in seen:
                order_parts.append(f"{positions[key]} ASC NULLS LAST")
                seen.add(key)

        if not order_parts:
            return ""
        return f"ORDER BY {', '.join(order_parts)}"

    def build_filter(self, f: PlanFilter, index: int) -> Tuple[str, List[Tuple[str, Any]]]:
        """
        生成一个绑定参数的谓词

        Args:
            f: 校验后的过滤条件
            index: 序号，用于参数命名

        Returns:
            (predicate, [(name, value), ...])
        """
        col = f.column.quoted
        name = f"{self.PARAM_PREFIX}_{index}"

        if f.operator == "IN":
            names = [f"{name}_{i}" for i in range(len(f.values))]
            placeholders = ", ".join(f"${n}" for n in names)
            return f"{col} IN ({placeholders})", list(zip(names, f.values))
        return f"{col} {f.operator} ${name}", [(name, f.value)]


# 全局单例
_query_compiler = None


def get_query_compiler() -> QueryCompiler:
    """获取 QueryCompiler 单例"""
    global _query_compiler
    if _query_compiler is None:
        _query_compiler = QueryCompiler()
    return _query_compiler
