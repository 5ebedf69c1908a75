"""模式校验器 - 在实时目录中查找表和列"""

from typing import Any, Dict, List

import duckdb

from chartdata.core.constants import FLOAT_COLUMN_TYPES
from chartdata.engines.chart_plan import ColumnSet
from chartdata.engines.connection_pool import ConnectionPool
from chartdata.engines.errors import SchemaLookupError, TableNotFoundError
from chartdata.engines.query_compiler import TableRef
from chartdata.utils.logger import log


class SchemaValidator:
    """目录查询；这里的每条查询都以参数绑定名称"""

    TABLE_SQL = (
        "SELECT table_schema, table_name FROM information_schema.tables "
        "WHERE table_name = $table_name ORDER BY table_schema LIMIT 1"
    )
    COLUMNS_SQL = (
        "SELECT column_name, data_type FROM information_schema.columns "
        "WHERE table_schema = $schema AND table_name = $table_name "
        "ORDER BY ordinal_position"
    )
    LIST_TABLES_SQL = (
        "SELECT table_schema, table_name FROM information_schema.tables "
        "WHERE table_type IN ('BASE TABLE', 'VIEW') "
        "AND table_schema NOT IN ('information_schema', 'pg_catalog') "
        "ORDER BY table_schema, table_name"
    )

    def _fetch(self, pool: ConnectionPool, sql: str, params: Dict[str, Any]) -> List[tuple]:
        try:
            with pool.acquire() as conn:
                cursor = conn.execute(sql, params) if params else conn.execute(sql)
                return cursor.fetchall()
        except duckdb.Error as e:
            log.error(f"目录查询失败: {e}")
            raise SchemaLookupError(f"Schema lookup failed: {e}") from e

    def resolve_table(self, pool: ConnectionPool, name: str) -> TableRef:
        """
        按精确名称解析表

        Args:
            pool: 数据源
            name: 请求的表名

        Returns:
            带目录中 schema 与表名的 TableRef

        Raises:
            TableNotFoundError: 表不存在
        """
        rows = self._fetch(pool, self.TABLE_SQL, {"table_name": name})
        if not rows:
            log.warning(f"表不存在: {name}")
            raise TableNotFoundError(name)
        schema, table = rows[0]
        return TableRef(schema=schema, table=table)

    def fetch_columns(self, pool: ConnectionPool, table: TableRef) -> ColumnSet:
        """已解析表的清洗后列名，并标记浮点列"""
        rows = self._fetch(pool, self.COLUMNS_SQL, {"schema": table.schema, "table_name": table.table})
        return ColumnSet.from_names(
            (column for column, _ in rows),
            float_names=[column for column, data_type in rows if data_type.upper() in FLOAT_COLUMN_TYPES]
        )

    def describe_table(self, pool: ConnectionPool, name: str) -> List[Dict[str, str]]:
        """按列序返回表的列名和类型"""
        table = self.resolve_table(pool, name)
        rows = self._fetch(pool, self.COLUMNS_SQL, {"schema": table.schema, "table_name": table.table})
        return [{"name": column, "type": data_type} for column, data_type in rows]

    def list_tables(self, pool: ConnectionPool) -> List[TableRef]:
        """所有用户表和视图"""
        rows = self._fetch(pool, self.LIST_TABLES_SQL, {})
        return [TableRef(schema=schema, table=table) for schema, table in rows]


# 全局单例
_schema_validator = None


def get_schema_validator() -> SchemaValidator:
    """获取 SchemaValidator 单例"""
    global _schema_validator
    if _schema_validator is None:
        _schema_validator = SchemaValidator()
    return _schema_validator
