"""图表引擎 - 各查询模式共用的单图表流程"""

from abc import ABC, abstractmethod
from typing import Any, Dict, FrozenSet, Iterable, List, Optional

from chartdata.core.config import settings
from chartdata.engines.chart_plan import compose_labels
from chartdata.engines.connection_pool import PoolRegistry, get_pool_registry
from chartdata.engines.errors import InvalidQueryError, NoValidYAxisError, ValidationError
from chartdata.engines.local_aggregator import LocalAggregator, get_local_aggregator
from chartdata.engines.query_compiler import QueryCompiler, get_query_compiler
from chartdata.engines.query_executor import QueryExecutor, get_query_executor
from chartdata.engines.schema_validator import SchemaValidator, get_schema_validator
from chartdata.models.chart import ChartDataSource, ChartResult
from chartdata.utils.logger import log
from chartdata.utils.security import SecurityValidator


class ChartQueryEngine(ABC):
    """把图表数据源转换为结果行"""

    @abstractmethod
    def run(self, source: ChartDataSource, rows: Optional[List[Dict[str, Any]]] = None) -> ChartResult:
        """
        执行一个图表查询

        Args:
            source: 图表数据源
            rows: 预先给出的数据行（导入模式）；SQL 引擎忽略此参数

        Returns:
            ChartResult
        """


class SqlChartEngine(ChartQueryEngine):
    """针对实时数据源的简单模式与自定义模式"""

    def __init__(
        self,
        registry: Optional[PoolRegistry] = None,
        schema_validator: Optional[SchemaValidator] = None,
        compiler: Optional[QueryCompiler] = None,
        executor: Optional[QueryExecutor] = None,
        whitelist: Optional[Iterable[str]] = None
    ):
        self.registry = registry or get_pool_registry()
        self.schema_validator = schema_validator or get_schema_validator()
        self.compiler = compiler or get_query_compiler()
        self.executor = executor or get_query_executor()
        procedures = settings.stored_procedure_whitelist if whitelist is None else whitelist
        self.whitelist: FrozenSet[str] = SecurityValidator.build_whitelist(procedures)

    def run(self, source: ChartDataSource, rows: Optional[List[Dict[str, Any]]] = None) -> ChartResult:
        if source.effective_mode == "custom":
            return self.run_custom(source)
        return self.run_simple(source)

    def run_simple(self, source: ChartDataSource) -> ChartResult:
        """校验、编译并执行单表聚合"""
        if not source.table:
            raise ValidationError("Missing required field: table")
        if not source.y_axis:
            raise NoValidYAxisError([])

        pool = self.registry.get_pool(source.connection_id)
        table = self.schema_validator.resolve_table(pool, source.table)
        columns = self.schema_validator.fetch_columns(pool, table)

        compiled = self.compiler.compile(source, columns, table)
        log.info(f"在 {table.qualified} 上执行图表查询")
        rows = self.executor.execute(pool, compiled)
        return ChartResult(rows=compose_labels(rows, compiled.plan), warnings=list(compiled.plan.warnings))

    def run_custom(self, source: ChartDataSource) -> ChartResult:
        """执行校验后的自定义 SQL，可在外层叠加过滤条件"""
        validation = SecurityValidator.validate_sql_query(source.custom_query, self.whitelist)
        if not validation.is_valid:
            raise InvalidQueryError(validation.error or "Invalid query")

        pool = self.registry.get_pool(source.connection_id)
        compiled, warnings = self.executor.prepare_custom_query(validation, source.filters)
        log.info("执行自定义图表查询")
        rows = self.executor.execute(pool, compiled, max_rows=settings.max_query_rows)
        return ChartResult(rows=rows, warnings=warnings)


class LocalChartEngine(ChartQueryEngine):
    """导入模式：聚合内存中已有的数据"""

    def __init__(self, aggregator: Optional[LocalAggregator] = None):
        self.aggregator = aggregator or get_local_aggregator()

    def run(self, source: ChartDataSource, rows: Optional[List[Dict[str, Any]]] = None) -> ChartResult:
        if rows is None:
            rows = source.imported_data
        if rows is None:
            raise ValidationError("importedData is required in import mode")
        if not source.y_axis:
            raise NoValidYAxisError([])

        return self.aggregator.aggregate(rows, source)


class ChartDataService:
    """按查询模式把图表数据源分派给对应引擎"""

    def __init__(self, sql_engine: Optional[ChartQueryEngine] = None, local_engine: Optional[ChartQueryEngine] = None):
        self.sql_engine = sql_engine or SqlChartEngine()
        self.local_engine = local_engine or LocalChartEngine()

    def engine_for(self, source: ChartDataSource) -> ChartQueryEngine:
        if source.effective_mode == "import":
            return self.local_engine
        return self.sql_engine

    def run(self, source: ChartDataSource) -> ChartResult:
        """
        执行一个图表数据源

        Raises:
            ChartDataError: 校验、查找或执行失败
        """
        if not SecurityValidator.validate_query_complexity(source.model_dump()):
            raise ValidationError("Query complexity exceeds limits")

        log.info(f"图表数据请求: mode={source.effective_mode} table={source.table}")
        return self.engine_for(source).run(source)


# 全局单例
_chart_service = None


def get_chart_service() -> ChartDataService:
    """获取 ChartDataService 单例"""
    global _chart_service
    if _chart_service is None:
        _chart_service = ChartDataService()
    return _chart_service
