"""系统常量定义"""

from typing import Dict, Optional, Set, Tuple

# 过滤操作符白名单
ALLOWED_FILTER_OPERATORS: Set[str] = {
    "=", "!=", ">", "<", ">=", "<=", "LIKE", "IN"
}

# 聚合函数白名单，其余一律回退为 DEFAULT_AGGREGATION
ALLOWED_AGGREGATIONS: Set[str] = {
    "SUM", "AVG", "COUNT", "MIN", "MAX"
}
DEFAULT_AGGREGATION = "SUM"

# 时间粒度 -> strftime 格式（None 表示保留 DATE 值）
RESOLUTION_FORMATS: Dict[str, Optional[str]] = {
    "year": "%Y",
    "month": "%Y-%m",
    "day": None,
}

# 浮点列类型（SUM 使用补偿求和）
FLOAT_COLUMN_TYPES: Set[str] = {"FLOAT", "FLOAT4", "REAL", "DOUBLE", "FLOAT8"}

# 组合标签分隔符
LABEL_SEPARATOR = " - "

# 自定义查询外包过滤条件时的子查询别名
CUSTOM_SUBQUERY_ALIAS = "_filtered_sub"

# 自定义查询允许的开头
READ_ONLY_PREFIXES: Tuple[str, ...] = ("SELECT", "WITH")
EXEC_PREFIXES: Tuple[str, ...] = ("EXEC", "EXECUTE")

# 自定义查询中禁止出现的关键词（整词匹配）
BLOCKED_SQL_KEYWORDS: Set[str] = {
    "INSERT", "UPDATE", "DELETE", "DROP", "ALTER", "CREATE", "TRUNCATE",
    "EXEC", "EXECUTE", "MERGE", "GRANT", "REVOKE", "DENY",
    "OPENROWSET", "OPENDATASOURCE", "BULK", "BACKUP", "RESTORE",
    "SHUTDOWN", "KILL", "DBCC", "CHECKPOINT", "ATTACH", "DETACH", "COPY",
    "INSTALL", "LOAD", "PRAGMA",
}

# 禁止的标识符前缀（系统存储过程）
BLOCKED_SQL_PREFIXES: Tuple[str, ...] = ("XP_", "SP_")

# 禁止调用的函数：文件读取 read_*、扫描 *_scan 以及访问宿主环境的函数
BLOCKED_SQL_FUNCTIONS: Set[str] = {"GLOB", "GETENV", "QUERY", "QUERY_TABLE"}
BLOCKED_SQL_FUNCTION_PREFIXES: Tuple[str, ...] = ("READ_",)
BLOCKED_SQL_FUNCTION_SUFFIXES: Tuple[str, ...] = ("_SCAN",)

# 自定义查询中 SELECT 关键词上限
MAX_CUSTOM_SELECTS = 10
