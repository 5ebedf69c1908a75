"""查询执行器 - 在连接池上执行编译后的查询"""

import time
from typing import Any, Dict, Iterable, List, Optional, Tuple

import duckdb

from chartdata.core.constants import CUSTOM_SUBQUERY_ALIAS
from chartdata.engines.chart_plan import resolve_filters
from chartdata.engines.connection_pool import ConnectionPool
from chartdata.engines.errors import ExecutionError, InvalidQueryError
from chartdata.engines.query_compiler import CompiledQuery, get_query_compiler
from chartdata.models.chart import FilterCondition
from chartdata.utils.logger import log
from chartdata.utils.security import SQLValidationResult


class QueryExecutor:
    """一条编译后的查询，一次往返"""

    def __init__(self):
        self.compiler = get_query_compiler()

    def execute(self, pool: ConnectionPool, compiled: CompiledQuery, max_rows: Optional[int] = None) -> List[Dict[str, Any]]:
        """
        执行编译后的查询

        执行前再用解析器确认只有一条语句，多条语句一律不执行。

        Args:
            pool: 数据源
            compiled: SQL 与参数
            max_rows: 最多读取的行数

        Returns:
            以结果列名为键的字典行

        Raises:
            ExecutionError: 驱动报错或包含多条语句
        """
        params = compiled.params
        start_time = time.time()

        try:
            with pool.acquire() as conn:
                statements = conn.extract_statements(compiled.sql)
                if len(statements) != 1:
                    log.error(f"拒绝执行 {len(statements)} 条语句 | SQL: {compiled.sql}")
                    raise ExecutionError(
                        "Exactly one SQL statement can be executed",
                        sql=compiled.sql,
                        params=params
                    )
                cursor = conn.execute(compiled.sql, params) if params else conn.execute(compiled.sql)
                if cursor.description is None:
                    return []
                columns = [d[0] for d in cursor.description]
                records = cursor.fetchmany(max_rows) if max_rows else cursor.fetchall()
        except duckdb.Error as e:
            log.error(f"查询执行失败: {e} | SQL: {compiled.sql} | 参数: {params}")
            raise ExecutionError(f"Query execution failed: {e}", sql=compiled.sql, params=params, cause=e) from e

        execution_time = (time.time() - start_time) * 1000
        log.info(f"查询返回 {len(records)} 行，耗时 {execution_time:.2f} ms")
        return [dict(zip(columns, record)) for record in records]

    def prepare_custom_query(
        self,
        validation: SQLValidationResult,
        filters: Iterable[FilterCondition] = ()
    ) -> Tuple[CompiledQuery, List[str]]:
        """
        在校验通过的自定义查询外叠加过滤条件

        查询本身不做改写，过滤条件以子查询外层的参数化 WHERE 实现。

        Args:
            validation: SecurityValidator.validate_sql_query 的通过结果
            filters: 过滤条件

        Returns:
            (CompiledQuery, 被丢弃过滤条件的警告)
        """
        if not validation.is_valid or not validation.sanitized_query:
            raise InvalidQueryError(validation.error or "Invalid query")

        plan_filters, warnings = resolve_filters(filters)
        for warning in warnings:
            log.warning(warning)

        if not plan_filters:
            return CompiledQuery(sql=validation.sanitized_query), warnings

        if validation.is_exec:
            raise InvalidQueryError("Filters cannot be applied to EXEC statements")

        conditions: List[str] = []
        params: List[Tuple[str, Any]] = []
        for index, f in enumerate(plan_filters):
            clause, clause_params = self.compiler.build_filter(f, index)
            conditions.append(clause)
            params.extend(clause_params)

        # 换行收尾，原查询末尾的行注释不会吞掉右括号
        sql = (
            f"SELECT * FROM ({validation.sanitized_query}\n) AS {CUSTOM_SUBQUERY_ALIAS} "
            f"WHERE {' AND '.join(conditions)}"
        )
        return CompiledQuery(sql=sql, parameters=tuple(params)), warnings


# 全局单例
_query_executor = None


def get_query_executor() -> QueryExecutor:
    """获取 QueryExecutor 单例"""
    global _query_executor
    if _query_executor is None:
        _query_executor = QueryExecutor()
    return _query_executor
