"""图表数据源模型"""

from datetime import date
from typing import Any, Dict, List, Literal, Optional, Union
from pydantic import BaseModel, ConfigDict, Field, field_validator


class FilterCondition(BaseModel):
    """过滤条件"""
    model_config = ConfigDict(frozen=True)

    field: str = Field(..., description="列名")
    operator: str = Field("=", description="操作符: =, !=, >, <, >=, <=, LIKE, IN")
    value: Any = Field(None, description="过滤值；IN 时为列表")

    @field_validator("operator", mode="before")
    @classmethod
    def normalize_operator(cls, v: Any) -> str:
        # 未知操作符在此保留，编译时丢弃
        if v is None:
            return "="
        return str(v).strip().upper()


class ChartDataSource(BaseModel):
    """单个图表数据的声明式描述"""
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    table: Optional[str] = Field(None, description="基础表（简单模式）")
    x_axis: Optional[str] = Field(None, alias="xAxis", description="X 轴列")
    y_axis: List[str] = Field(default_factory=list, alias="yAxis", description="聚合列")
    aggregation: str = Field("sum", description="聚合函数: sum, avg, count, min, max")
    group_by: Union[str, List[str], None] = Field(None, alias="groupBy", description="额外分组列")
    order_by: Optional[str] = Field(None, alias="orderBy", description="排序列")
    order_direction: str = Field("asc", alias="orderDirection", description="排序方向: asc 或 desc")
    limit: Optional[int] = Field(50, description="行数上限；非正数时使用默认值")
    filters: List[FilterCondition] = Field(default_factory=list, description="过滤条件")
    resolution: Optional[str] = Field(None, description="时间粒度: day, month, year")
    drill_down_label_field: Optional[str] = Field(None, alias="drillDownLabelField", description="通过 MAX() 携带的下钻标签")
    query_mode: Literal["simple", "custom", "import"] = Field("simple", alias="queryMode", description="执行模式")
    custom_query: Optional[str] = Field(None, alias="customQuery", description="原始 SQL（自定义模式）")
    imported_data: Optional[List[Dict[str, Any]]] = Field(None, alias="importedData", description="数据行（导入模式）")
    connection_id: Optional[str] = Field(None, alias="connectionId", description="数据源连接")
    date_column: Optional[str] = Field(None, alias="dateColumn", description="全局日期范围过滤所用的列")
    start_date_column: Optional[str] = Field(None, alias="startDateColumn", description="与 dateRange.from 比较的列")
    end_date_column: Optional[str] = Field(None, alias="endDateColumn", description="与 dateRange.to 比较的列")

    @field_validator("query_mode", mode="before")
    @classmethod
    def normalize_query_mode(cls, v: Any) -> Any:
        if v is None:
            return "simple"
        return str(v).lower() if isinstance(v, str) else v

    @property
    def effective_mode(self) -> str:
        """实际使用的模式；仅给出 customQuery 时也视为自定义模式"""
        if self.query_mode == "simple" and self.custom_query and self.custom_query.strip():
            return "custom"
        return self.query_mode


class DateRange(BaseModel):
    """仪表盘全局日期范围"""
    model_config = ConfigDict(populate_by_name=True)

    from_: Optional[date] = Field(None, alias="from", description="起始日期（含）")
    to: Optional[date] = Field(None, description="结束日期（含）")


class ChartDataRequest(ChartDataSource):
    """单图表请求体"""
    date_range: Optional[DateRange] = Field(None, alias="dateRange", description="全局日期范围")

    def to_source(self) -> ChartDataSource:
        source = ChartDataSource.model_validate(self.model_dump(exclude={"date_range"}))
        if self.date_range:
            return apply_date_range(source, self.date_range.from_, self.date_range.to)
        return source


class BatchRequest(BaseModel):
    """批量请求中的一个组件"""
    model_config = ConfigDict(populate_by_name=True)

    widget_id: str = Field(..., alias="widgetId", description="组件标识")
    config: ChartDataSource = Field(..., description="图表数据源")


class BatchChartDataRequest(BaseModel):
    """批量请求体"""
    model_config = ConfigDict(populate_by_name=True)

    requests: List[BatchRequest] = Field(default_factory=list, description="组件请求")
    date_range: Optional[DateRange] = Field(None, alias="dateRange", description="全局日期范围")


class ChartResult(BaseModel):
    """单个图表的结果"""
    rows: List[Dict[str, Any]] = Field(default_factory=list, description="结果行")
    warnings: List[str] = Field(default_factory=list, description="被丢弃的规格字段")


class BatchResult(BaseModel):
    """批量请求中一个组件的结果"""
    widget_id: str = Field(..., description="组件标识")
    rows: List[Dict[str, Any]] = Field(default_factory=list, description="结果行")
    error: Optional[str] = Field(None, description="组件失败时的错误信息")
    warnings: List[str] = Field(default_factory=list, description="被丢弃的规格字段")


def apply_date_range(
    source: ChartDataSource,
    date_from: Optional[date] = None,
    date_to: Optional[date] = None
) -> ChartDataSource:
    """
    为图表数据源追加全局日期范围过滤

    Args:
        source: 图表数据源
        date_from: 起始日期（含），与 startDateColumn 或 dateColumn 比较
        date_to: 结束日期（含），与 endDateColumn 或 dateColumn 比较

    Returns:
        新的 ChartDataSource；没有适用的列时原样返回
    """
    filters = list(source.filters)
    start_col = source.start_date_column or source.date_column
    end_col = source.end_date_column or source.date_column

    if start_col and date_from:
        filters.append(FilterCondition(field=start_col, operator=">=", value=date_from.isoformat()))
    if end_col and date_to:
        filters.append(FilterCondition(field=end_col, operator="<=", value=date_to.isoformat()))

    if len(filters) == len(source.filters):
        return source
    return source.model_copy(update={"filters": filters})
