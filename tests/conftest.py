"""共享夹具：带示例表的内存 DuckDB 数据源"""

from datetime import date

import pytest

from chartdata.engines.chart_engine import ChartDataService, LocalChartEngine, SqlChartEngine
from chartdata.engines.connection_pool import PoolRegistry

SALES_ROWS = [
    {"Region": "North", "Channel": "Online", "Amount": 100, "Product": "Widget", "OrderDate": date(2024, 1, 5)},
    {"Region": "North", "Channel": "Retail", "Amount": 50, "Product": "Gadget", "OrderDate": date(2024, 1, 20)},
    {"Region": "South", "Channel": "Online", "Amount": 70, "Product": "Widget", "OrderDate": date(2024, 2, 3)},
]

DAILY_ROWS = [
    {"Day": date(2024, 1, 1), "Region": "North", "Visits": 10, "Revenue": 1.5},
    {"Day": date(2024, 1, 2), "Region": "North", "Visits": 20, "Revenue": 2.5},
    {"Day": date(2024, 1, 15), "Region": "South", "Visits": 5, "Revenue": None},
    {"Day": date(2024, 2, 1), "Region": "North", "Visits": 7, "Revenue": 4.0},
    {"Day": date(2024, 2, 10), "Region": "South", "Visits": 3, "Revenue": 0.5},
    {"Day": date(2024, 3, 1), "Region": "North", "Visits": None, "Revenue": 1.0},
    {"Day": None, "Region": "North", "Visits": 100, "Revenue": 9.0},
]

READING_ROWS = [
    {"Sensor": "a", "Measure": 0.1},
    {"Sensor": "a", "Measure": 0.2},
    {"Sensor": "a", "Measure": 0.3},
    {"Sensor": "b", "Measure": 1.5},
    {"Sensor": "b", "Measure": None},
]

WHITELIST = ["dbo.sp_SalesReport"]


def _load(conn, ddl: str, table: str, rows):
    conn.execute(ddl)
    if rows:
        columns = list(rows[0].keys())
        placeholders = ", ".join("?" for _ in columns)
        conn.executemany(
            f"INSERT INTO {table} VALUES ({placeholders})",
            [[row[c] for c in columns] for row in rows]
        )


@pytest.fixture
def registry():
    """默认数据源包含 Sales、DailyMetrics、Events 和 Readings 表"""
    registry = PoolRegistry(default_database=":memory:", connections={}, max_connections=4)
    pool = registry.get_pool()
    with pool.acquire() as conn:
        _load(
            conn,
            "CREATE TABLE Sales (Region VARCHAR, Channel VARCHAR, Amount INTEGER, Product VARCHAR, OrderDate DATE)",
            "Sales",
            SALES_ROWS,
        )
        _load(
            conn,
            "CREATE TABLE DailyMetrics (Day DATE, Region VARCHAR, Visits INTEGER, Revenue DOUBLE)",
            "DailyMetrics",
            DAILY_ROWS,
        )
        conn.execute("CREATE TABLE Events AS SELECT i AS EventId, i % 7 AS Bucket FROM range(120) t(i)")
        _load(conn, "CREATE TABLE Readings (Sensor VARCHAR, Measure DOUBLE)", "Readings", READING_ROWS)
    yield registry
    registry.close_all()


@pytest.fixture
def sql_engine(registry):
    return SqlChartEngine(registry=registry, whitelist=WHITELIST)


@pytest.fixture
def local_engine():
    return LocalChartEngine()


@pytest.fixture
def service(sql_engine, local_engine):
    return ChartDataService(sql_engine=sql_engine, local_engine=local_engine)
