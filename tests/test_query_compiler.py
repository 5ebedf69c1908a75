"""查询编译器测试"""

import pytest

from chartdata.engines.chart_plan import ColumnSet, compose_labels, resolve_plan
from chartdata.engines.errors import InvalidXAxisError, NoValidYAxisError
from chartdata.engines.query_compiler import QueryCompiler, TableRef
from chartdata.models.chart import ChartDataSource, FilterCondition

SALES_COLUMNS = ColumnSet.from_names(["Region", "Channel", "Amount", "Product", "OrderDate"])


@pytest.fixture
def compiler():
    return QueryCompiler()


def make_source(**kwargs) -> ChartDataSource:
    kwargs.setdefault("table", "Sales")
    kwargs.setdefault("y_axis", ["Amount"])
    return ChartDataSource(**kwargs)


def test_grouped_query_shape(compiler):
    """xAxis + groupBy + SUM"""
    compiled = compiler.compile(
        make_source(x_axis="Region", group_by="Channel"),
        SALES_COLUMNS,
        TableRef(schema="main", table="Sales"),
    )

    assert compiled.sql == (
        'SELECT "Region" AS "Region", "Channel", SUM("Amount") AS "Amount" '
        'FROM "main"."Sales" '
        'WHERE "Region" IS NOT NULL '
        'GROUP BY "Region", "Channel" '
        'ORDER BY 1 ASC NULLS LAST, 2 ASC NULLS LAST '
        'LIMIT 50'
    )
    assert compiled.params == {}


def test_no_x_axis_single_aggregate(compiler):
    """没有 xAxis 和 groupBy 时不生成 GROUP BY 和 ORDER BY"""
    compiled = compiler.compile(make_source(aggregation="count"), SALES_COLUMNS)
    assert compiled.sql == 'SELECT COUNT("Amount") AS "Amount" FROM "Sales" LIMIT 50'


def test_unknown_aggregation_falls_back_to_sum(compiler):
    """白名单外的聚合函数变为 SUM"""
    compiled = compiler.compile(make_source(aggregation="MEDIAN; DROP"), SALES_COLUMNS)
    assert 'SUM("Amount")' in compiled.sql


def test_filters_are_bound_parameters(compiler):
    """过滤值不会出现在 SQL 文本中"""
    source = make_source(
        x_axis="Region",
        filters=[
            FilterCondition(field="Amount", operator=">", value=60),
            FilterCondition(field="Product", operator="like", value="Wid%'; DROP TABLE Sales; --"),
        ],
    )
    compiled = compiler.compile(source, SALES_COLUMNS)

    assert 'WHERE "Region" IS NOT NULL AND "Amount" > $filter_0 AND "Product" LIKE $filter_1' in compiled.sql
    assert "DROP" not in compiled.sql
    assert compiled.params == {"filter_0": 60, "filter_1": "Wid%'; DROP TABLE Sales; --"}


def test_in_filter_expansion(compiler):
    """IN 为每个值展开一个参数"""
    source = make_source(filters=[FilterCondition(field="Region", operator="IN", value=["North", "South"])])
    compiled = compiler.compile(source, SALES_COLUMNS)

    assert '"Region" IN ($filter_0_0, $filter_0_1)' in compiled.sql
    assert compiled.params == {"filter_0_0": "North", "filter_0_1": "South"}


def test_scalar_in_filter(compiler):
    """IN 的标量值视为单元素列表"""
    source = make_source(filters=[FilterCondition(field="Region", operator="IN", value="North")])
    compiled = compiler.compile(source, SALES_COLUMNS)
    assert compiled.params == {"filter_0_0": "North"}


def test_empty_in_filter_dropped(compiler):
    """没有值的 IN 被丢弃，不会生成非法 SQL"""
    source = make_source(filters=[FilterCondition(field="Region", operator="IN", value=[])])
    compiled = compiler.compile(source, SALES_COLUMNS)
    assert "WHERE" not in compiled.sql
    assert compiled.plan.warnings


def test_invalid_filters_dropped(compiler):
    """跳过未知操作符和未知列"""
    source = make_source(filters=[
        FilterCondition(field="Amount", operator="BETWEEN", value=[1, 2]),
        FilterCondition(field="Secret", operator="=", value=1),
        FilterCondition(field="Amount", operator="<=", value=100),
    ])
    compiled = compiler.compile(source, SALES_COLUMNS)

    assert '"Amount" <= $filter_0' in compiled.sql
    assert compiled.params == {"filter_0": 100}
    assert len(compiled.plan.warnings) == 2


@pytest.mark.parametrize("resolution, expr", [
    ("year", "strftime(TRY_CAST(\"OrderDate\" AS DATE), '%Y')"),
    ("Month", "strftime(TRY_CAST(\"OrderDate\" AS DATE), '%Y-%m')"),
    ("day", "TRY_CAST(\"OrderDate\" AS DATE)"),
])
def test_resolution_expression(compiler, resolution, expr):
    """分桶表达式同时用于 SELECT 和 GROUP BY"""
    compiled = compiler.compile(make_source(x_axis="OrderDate", resolution=resolution), SALES_COLUMNS)
    assert f'SELECT {expr} AS "OrderDate"' in compiled.sql
    assert f"GROUP BY {expr}" in compiled.sql


def test_unknown_resolution_ignored(compiler):
    """不支持的时间粒度按原值分组"""
    compiled = compiler.compile(make_source(x_axis="OrderDate", resolution="week"), SALES_COLUMNS)
    assert "strftime" not in compiled.sql
    assert 'GROUP BY "OrderDate"' in compiled.sql


def test_drill_down_label(compiler):
    """标签通过 MAX() 携带，不参与分组"""
    compiled = compiler.compile(
        make_source(x_axis="Region", drill_down_label_field="Product"),
        SALES_COLUMNS,
    )
    assert 'MAX("Product") AS "Product"' in compiled.sql
    assert 'GROUP BY "Region" ' in compiled.sql


def test_order_by_result_column(compiler):
    """orderBy 引用结果列位置，分组列决定并列顺序"""
    compiled = compiler.compile(
        make_source(x_axis="Region", group_by="Channel", order_by="Amount", order_direction="desc"),
        SALES_COLUMNS,
    )
    assert "ORDER BY 3 DESC NULLS LAST, 1 ASC NULLS LAST, 2 ASC NULLS LAST" in compiled.sql


def test_order_by_not_in_result_dropped(compiler):
    """未被选中的列不能用于分组结果排序"""
    compiled = compiler.compile(make_source(x_axis="Region", order_by="Product"), SALES_COLUMNS)
    assert "ORDER BY 1 ASC NULLS LAST" in compiled.sql
    assert compiled.plan.order_by is None
    assert any("orderBy" in w for w in compiled.plan.warnings)


def test_unknown_group_by_dropped(compiler):
    """未知的 groupBy 列被丢弃并记录警告"""
    compiled = compiler.compile(
        make_source(x_axis="Region", group_by=["Channel", "Nope"]),
        SALES_COLUMNS,
    )
    assert 'GROUP BY "Region", "Channel"' in compiled.sql
    assert any("Nope" in w for w in compiled.plan.warnings)


@pytest.mark.parametrize("limit, expected", [(None, 50), (0, 50), (-3, 50), (10, 10), (10**9, 10000)])
def test_limit(compiler, limit, expected):
    """缺少 limit 时使用默认值，过大的 limit 被截断"""
    compiled = compiler.compile(make_source(limit=limit), SALES_COLUMNS)
    assert compiled.sql.endswith(f"LIMIT {expected}")


def test_max_rows_override(compiler):
    """调用方可以降低上限"""
    compiled = compiler.compile(make_source(limit=500), SALES_COLUMNS, max_rows=100)
    assert compiled.sql.endswith("LIMIT 100")


def test_compile_is_deterministic(compiler):
    """相同输入得到相同的 SQL 和参数"""
    source = make_source(
        x_axis="Region",
        group_by="Channel",
        filters=[FilterCondition(field="Region", operator="IN", value=["North", "South"])],
    )
    first = compiler.compile(source, SALES_COLUMNS)
    second = compiler.compile(source, SALES_COLUMNS)
    assert first.sql == second.sql
    assert first.parameters == second.parameters


def test_hostile_identifiers_are_sanitized(compiler):
    """标识符只有经过清洗才会进入 SQL"""
    source = ChartDataSource(
        table='Sales"; DROP TABLE Sales; --',
        x_axis='Reg"ion',
        y_axis=['Amount"); DELETE FROM Sales; --'],
    )
    compiled = compiler.compile(source, ColumnSet.from_names(["Region", "AmountDELETEFROMSales"]))

    assert ";" not in compiled.sql
    assert "--" not in compiled.sql
    assert '"SalesDROPTABLESales"' in compiled.sql


def test_no_valid_y_axis(compiler):
    """所有 yAxis 列都未知"""
    with pytest.raises(NoValidYAxisError) as excinfo:
        compiler.compile(make_source(y_axis=["Nope", "Missing"]), SALES_COLUMNS)
    assert excinfo.value.status_code == 400
    assert "Nope" in excinfo.value.message


def test_invalid_x_axis(compiler):
    """未知的 xAxis 报错"""
    with pytest.raises(InvalidXAxisError):
        compiler.compile(make_source(x_axis="Nope"), SALES_COLUMNS)


def test_partially_valid_y_axis(compiler):
    """至少有一个有效列时丢弃无效的 yAxis 列"""
    compiled = compiler.compile(make_source(y_axis=["Amount", "Nope"]), SALES_COLUMNS)
    assert compiled.plan.y_axis[0].name == "Amount"
    assert len(compiled.plan.y_axis) == 1
    assert compiled.plan.warnings


def test_y_axis_same_as_x_axis(compiler):
    """与 xAxis 相同的 yAxis 列被丢弃"""
    plan = resolve_plan(make_source(x_axis="Amount", y_axis=["Amount", "Region"]), SALES_COLUMNS)
    assert [c.name for c in plan.y_axis] == ["Region"]

    with pytest.raises(NoValidYAxisError):
        resolve_plan(make_source(x_axis="Amount", y_axis=["Amount"]), SALES_COLUMNS)


def test_compose_labels():
    """xAxis 变为 'x - g1 - g2'，null 显示为空"""
    plan = resolve_plan(make_source(x_axis="Region", group_by=["Channel", "Product"]), SALES_COLUMNS)
    rows = [
        {"Region": "North", "Channel": "Online", "Product": "Widget", "Amount": 1},
        {"Region": "North", "Channel": None, "Product": "Gadget", "Amount": 2},
    ]
    labelled = compose_labels(rows, plan)

    assert [r["Region"] for r in labelled] == ["North - Online - Widget", "North -  - Gadget"]
    assert rows[0]["Region"] == "North"


def test_compose_labels_without_group_by():
    """没有 groupBy 时数据行保持不变"""
    plan = resolve_plan(make_source(x_axis="Region"), SALES_COLUMNS)
    rows = [{"Region": "North", "Amount": 1}]
    assert compose_labels(rows, plan) is rows


def test_float_sum_uses_fsum(compiler):
    """浮点列的 SUM 编译为 fsum，其他列和其他聚合不变"""
    columns = ColumnSet.from_names(["Sensor", "Measure", "Count"], float_names=["Measure"])
    compiled = compiler.compile(
        ChartDataSource(table="Readings", x_axis="Sensor", y_axis=["Measure", "Count"]),
        columns,
    )
    assert 'fsum("Measure") AS "Measure"' in compiled.sql
    assert 'SUM("Count") AS "Count"' in compiled.sql

    compiled = compiler.compile(
        ChartDataSource(table="Readings", y_axis=["Measure"], aggregation="avg"),
        columns,
    )
    assert 'AVG("Measure")' in compiled.sql


def test_float_names_limited_to_known_columns():
    columns = ColumnSet.from_names(["Measure"], float_names=["Measure", "Ghost"])
    assert columns.float_names == frozenset({"Measure"})
    assert columns.is_float("Measure")
    assert not columns.is_float("Ghost")
