"""图表数据异常"""

from typing import Any, List, Optional


class ChartDataError(Exception):
    """基础异常；status_code 为 API 层返回的 HTTP 状态码"""

    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(ChartDataError):
    """图表规格字段缺失或无效"""

    status_code = 400


class NoValidYAxisError(ValidationError):
    """请求的 Y 轴列在表中都不存在"""

    def __init__(self, rejected: List[str]):
        if rejected:
            message = f"No valid Y-axis columns found (rejected: {', '.join(rejected)})"
        else:
            message = "No valid Y-axis columns found"
        super().__init__(message)
        self.rejected = list(rejected)


class InvalidXAxisError(ValidationError):
    """X 轴列在表中不存在"""

    def __init__(self, column: str):
        super().__init__(f"X-axis column '{column}' not found")
        self.column = column


class InvalidQueryError(ValidationError):
    """自定义 SQL 未通过校验"""


class TableNotFoundError(ChartDataError):
    """目录中没有请求的表"""

    status_code = 404

    def __init__(self, table: str):
        super().__init__(f"Table '{table}' not found")
        self.table = table


class SchemaLookupError(ChartDataError):
    """无法读取目录元数据"""

    status_code = 404


class PoolResolutionError(ChartDataError):
    """无法为请求解析连接池"""


class ConnectionNotFoundError(PoolResolutionError):
    """connectionId 不是已配置的数据源"""

    status_code = 404

    def __init__(self, connection_id: str):
        super().__init__(f"Database connection not found: {connection_id}")
        self.connection_id = connection_id


class ExecutionError(ChartDataError):
    """执行编译后的查询时驱动报错"""

    def __init__(self, message: str, sql: Optional[str] = None, params: Any = None, cause: Optional[Exception] = None):
        super().__init__(message)
        self.sql = sql
        self.params = params
        self.cause = str(cause) if cause else None
