"""连接池 - 按 connectionId 管理 DuckDB 数据源"""

import threading
from contextlib import contextmanager
from typing import Dict, Iterator, Optional

import duckdb

from chartdata.core.config import settings
from chartdata.engines.errors import ConnectionNotFoundError, PoolResolutionError
from chartdata.utils.logger import log

DEFAULT_POOL_KEY = "__default__"


class ConnectionPool:
    """
    一个 DuckDB 数据库，请求各自使用独立游标

    同时最多打开 max_connections 个游标，其余调用方在 acquire() 中等待。
    默认关闭外部访问，SQL 无法读取服务器上的文件。
    """

    def __init__(
        self,
        database: str,
        max_connections: int = 10,
        read_only: bool = False,
        name: str = DEFAULT_POOL_KEY,
        external_access: Optional[bool] = None
    ):
        self.name = name
        self.database = database
        self.max_connections = max_connections
        self.read_only = read_only and database != ":memory:"
        self.external_access = settings.allow_external_access if external_access is None else external_access
        self._slots = threading.BoundedSemaphore(max_connections)
        self._lock = threading.Lock()
        self._conn: Optional[duckdb.DuckDBPyConnection] = None

    def _get_connection(self) -> duckdb.DuckDBPyConnection:
        """首次使用时打开数据库"""
        with self._lock:
            if self._conn is None:
                log.info(f"打开数据源 {self.name}: {self.database}")
                self._conn = duckdb.connect(
                    self.database,
                    read_only=self.read_only,
                    config={"enable_external_access": self.external_access}
                )
            return self._conn

    @contextmanager
    def acquire(self) -> Iterator[duckdb.DuckDBPyConnection]:
        """为一次查询借出游标"""
        with self._slots:
            cursor = self._get_connection().cursor()
            try:
                yield cursor
            finally:
                cursor.close()

    @property
    def connected(self) -> bool:
        return self._conn is not None

    def close(self):
        """关闭底层连接"""
        with self._lock:
            if self._conn is not None:
                self._conn.close()
                self._conn = None
                log.info(f"已关闭数据源 {self.name}")


class PoolRegistry:
    """将 connectionId 解析为 ConnectionPool"""

    def __init__(
        self,
        default_database: Optional[str] = None,
        connections: Optional[Dict[str, str]] = None,
        max_connections: Optional[int] = None,
        read_only: Optional[bool] = None,
        external_access: Optional[bool] = None
    ):
        self.default_database = default_database or settings.database_path
        self.connections: Dict[str, str] = dict(settings.connections if connections is None else connections)
        self.max_connections = max_connections or settings.max_connections
        self.read_only = settings.read_only if read_only is None else read_only
        self.external_access = settings.allow_external_access if external_access is None else external_access
        self.pools: Dict[str, ConnectionPool] = {}
        self._lock = threading.Lock()

    def register(self, connection_id: str, database: str):
        """新增或替换数据源"""
        with self._lock:
            self.connections[connection_id] = database
            stale = self.pools.pop(connection_id, None)
        if stale:
            stale.close()

    def get_pool(self, connection_id: Optional[str] = None) -> ConnectionPool:
        """
        获取 connectionId 对应的连接池

        Args:
            connection_id: 已配置的 id；None 表示默认数据源

        Returns:
            ConnectionPool

        Raises:
            ConnectionNotFoundError: 未知的 connectionId
            PoolResolutionError: 数据源无法打开
        """
        key = connection_id or DEFAULT_POOL_KEY

        with self._lock:
            if key in self.pools:
                return self.pools[key]

            if connection_id:
                if connection_id not in self.connections:
                    raise ConnectionNotFoundError(connection_id)
                database = self.connections[connection_id]
            else:
                database = self.default_database

            pool = ConnectionPool(
                database,
                self.max_connections,
                self.read_only,
                name=key,
                external_access=self.external_access
            )
            try:
                pool._get_connection()
            except duckdb.Error as e:
                log.error(f"无法打开数据源 {key}: {e}")
                raise PoolResolutionError(f"Could not open data source '{key}': {e}") from e

            self.pools[key] = pool
            return pool

    def close_all(self):
        """关闭所有已打开的连接池"""
        with self._lock:
            pools = list(self.pools.values())
            self.pools.clear()
        for pool in pools:
            pool.close()


# 全局单例
_pool_registry = None


def get_pool_registry() -> PoolRegistry:
    """获取 PoolRegistry 单例"""
    global _pool_registry
    if _pool_registry is None:
        _pool_registry = PoolRegistry()
    return _pool_registry
