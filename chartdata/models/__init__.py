"""数据模型"""

from chartdata.models.chart import (
    FilterCondition,
    ChartDataSource,
    ChartDataRequest,
    DateRange,
    BatchRequest,
    BatchChartDataRequest,
    ChartResult,
    BatchResult,
    apply_date_range
)
from chartdata.models.response import (
    ChartDataResponse,
    BatchChartDataResponse,
    ErrorResponse,
    TableInfo,
    TablesResponse,
    ColumnInfo,
    TableSchemaResponse
)

__all__ = [
    # 图表
    "FilterCondition",
    "ChartDataSource",
    "ChartDataRequest",
    "DateRange",
    "BatchRequest",
    "BatchChartDataRequest",
    "ChartResult",
    "BatchResult",
    "apply_date_range",
    # 响应
    "ChartDataResponse",
    "BatchChartDataResponse",
    "ErrorResponse",
    "TableInfo",
    "TablesResponse",
    "ColumnInfo",
    "TableSchemaResponse",
]
