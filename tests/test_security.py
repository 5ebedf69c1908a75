"""标识符清洗与自定义 SQL 校验测试"""

import pytest
from chartdata.utils.security import Identifier, SecurityValidator, sanitize

WHITELIST = SecurityValidator.build_whitelist(["dbo.sp_SalesReport"])


@pytest.mark.parametrize("raw, expected", [
    ("Amount", "Amount"),
    ("Order Amount", "OrderAmount"),
    ("Amount]; DROP TABLE Sales; --", "AmountDROPTABLESales"),
    ('x" OR "1"="1', "xOR11"),
    ("col_1", "col_1"),
    ("", ""),
    (None, ""),
])
def test_sanitize(raw, expected):
    """只保留单词字符"""
    assert sanitize(raw) == expected


def test_identifier_always_sanitized():
    """Identifier 不会把标点带进 SQL"""
    ident = Identifier('Amount"; DROP TABLE Sales; --')
    assert ident.name == "AmountDROPTABLESales"
    assert ident.quoted == '"AmountDROPTABLESales"'
    assert str(ident) == ident.quoted


def test_identifier_equality_and_immutability():
    """Identifier 按清洗后的名称比较，且不可修改"""
    assert Identifier("Region") == Identifier("Reg-ion")
    assert len({Identifier("Region"), Identifier("Region!")}) == 1
    assert not Identifier("!!!")
    with pytest.raises(AttributeError):
        Identifier("Region")._name = "x; DROP"


def test_select_is_valid():
    """普通 SELECT 原样通过"""
    query = "SELECT Region, SUM(Amount) AS Total FROM Sales GROUP BY Region"
    result = SecurityValidator.validate_sql_query(query)
    assert result.is_valid
    assert result.sanitized_query == query
    assert result.error is None


def test_trailing_semicolon_tolerated():
    """结尾的一个分号不算第二条语句"""
    result = SecurityValidator.validate_sql_query("  SELECT * FROM Sales;  ")
    assert result.is_valid
    assert result.sanitized_query == "SELECT * FROM Sales"


def test_cte_is_valid():
    """WITH ... SELECT 是只读查询"""
    result = SecurityValidator.validate_sql_query("WITH t AS (SELECT 1 AS a) SELECT a FROM t")
    assert result.is_valid


@pytest.mark.parametrize("query", [
    "SELECT 1; DROP TABLE Sales",
    "SELECT * FROM Sales; SELECT * FROM Users",
    "SELECT 1;-- trailing\nDELETE FROM Sales",
])
def test_multiple_statements_rejected(query):
    """自定义查询只能有一条语句"""
    result = SecurityValidator.validate_sql_query(query)
    assert not result.is_valid
    assert result.sanitized_query is None


@pytest.mark.parametrize("query", [
    "DELETE FROM Sales",
    "UPDATE Sales SET Amount = 0",
    "INSERT INTO Sales VALUES (1)",
    "DROP TABLE Sales",
    "ALTER TABLE Sales ADD COLUMN x INT",
    "SELECT * INTO Backup FROM Sales WHERE 1 = 1 AND EXISTS (SELECT 1) OR TRUNCATE",
    "SELECT * FROM OPENROWSET('x', 'y', 'z')",
    "SELECT * FROM master.dbo.xp_cmdshell",
    "SELECT * FROM Sales WHERE Region IN (SELECT Region FROM (DELETE FROM Sales))",
])
def test_write_verbs_rejected(query):
    """拒绝写入和 DDL 语句"""
    assert not SecurityValidator.validate_sql_query(query).is_valid


def test_keywords_inside_literals_allowed():
    """引号中的文本是数据而不是 SQL"""
    query = "SELECT * FROM Sales WHERE Product = 'drop; delete'"
    result = SecurityValidator.validate_sql_query(query)
    assert result.is_valid
    assert result.sanitized_query == query


def test_comments_ignored():
    """注释中的关键词不计入"""
    result = SecurityValidator.validate_sql_query("SELECT Amount FROM Sales -- DROP later")
    assert result.is_valid


@pytest.mark.parametrize("query", [None, "", "   ", 42])
def test_empty_query_rejected(query):
    """查询必须是非空字符串"""
    result = SecurityValidator.validate_sql_query(query)
    assert not result.is_valid
    assert result.error


def test_select_complexity_limit():
    """超过 10 个 SELECT 关键词时拒绝"""
    query = "SELECT * FROM Sales WHERE " + " OR ".join(
        f"Amount IN (SELECT {i})" for i in range(11)
    )
    result = SecurityValidator.validate_sql_query(query)
    assert not result.is_valid
    assert "complexity" in result.error


def test_exec_whitelisted():
    """白名单内的存储过程可以 EXEC，不论前缀和方括号"""
    for query in (
        "EXEC sp_SalesReport 2024",
        "EXEC dbo.sp_SalesReport @Year = 2024",
        "EXECUTE [Reports].[dbo].[sp_SalesReport] 2024",
    ):
        result = SecurityValidator.validate_sql_query(query, WHITELIST)
        assert result.is_valid, query
        assert result.is_exec


def test_exec_not_whitelisted():
    """拒绝未知的存储过程"""
    result = SecurityValidator.validate_sql_query("EXEC sp_DropEverything", WHITELIST)
    assert not result.is_valid
    assert "not whitelisted" in result.error


def test_exec_without_whitelist():
    """白名单为空时拒绝所有 EXEC"""
    assert not SecurityValidator.validate_sql_query("EXEC sp_SalesReport").is_valid


@pytest.mark.parametrize("query", [
    "EXEC sp_SalesReport 1 -- comment",
    "EXEC sp_SalesReport 1 /* x */",
    "EXEC sp_SalesReport 1, EXEC sp_SalesReport 2",
    "EXEC sp_SalesReport $$x$$",
])
def test_exec_dangerous_patterns(query):
    """即使过程在白名单内，注释和嵌套 EXEC 也被拒绝"""
    assert not SecurityValidator.validate_sql_query(query, WHITELIST).is_valid


def test_whitelist_accepts_raw_names():
    """普通名称列表也可作为白名单"""
    result = SecurityValidator.validate_sql_query("EXEC sp_SalesReport", ["[dbo].[sp_SalesReport]"])
    assert result.is_valid


def test_normalize_procedure_name():
    """去掉方括号和前缀并统一大小写"""
    assert SecurityValidator.normalize_procedure_name("[REPORTS].[dbo].[sp_Sales]") == "SP_SALES"
    assert SecurityValidator.normalize_procedure_name("") == ""


def test_validate_query_complexity():
    """拒绝超限的查询规格"""
    assert SecurityValidator.validate_query_complexity({"filters": [], "y_axis": ["a"]})
    assert not SecurityValidator.validate_query_complexity({"filters": [{}] * 21})
    assert not SecurityValidator.validate_query_complexity({"group_by": ["g"] * 11})
    assert not SecurityValidator.validate_query_complexity({"y_axis": ["y"] * 21})


@pytest.mark.parametrize("query", [
    "SELECT '--'; DROP TABLE Sales",
    "SELECT '/*'; DROP TABLE Sales; SELECT '*/'",
    "SELECT $$'$$ AS a; DROP TABLE Sales; SELECT $$'$$ AS b",
    "SELECT $tag$;$tag$ AS a; DELETE FROM Sales",
])
def test_comment_markers_in_literals_do_not_hide_statements(query):
    """字面量里的注释符号不能掩盖第二条语句"""
    result = SecurityValidator.validate_sql_query(query)
    assert not result.is_valid
    assert result.sanitized_query is None


@pytest.mark.parametrize("query", [
    "SELECT content FROM read_text('/etc/hostname')",
    "SELECT * FROM read_csv_auto('/etc/passwd')",
    "SELECT * FROM READ_PARQUET('data.parquet')",
    "SELECT * FROM parquet_scan('data.parquet')",
    "SELECT * FROM glob('/etc/*')",
    "SELECT getenv('HOME') AS home",
    "SELECT * FROM '/etc/passwd'",
    "SELECT * FROM Sales JOIN 'other.csv' USING (Region)",
])
def test_file_access_rejected(query):
    """DuckDB 的文件读取函数和直接读取文件路径都被拒绝"""
    result = SecurityValidator.validate_sql_query(query)
    assert not result.is_valid
    assert result.error


def test_blocked_names_allowed_as_plain_identifiers():
    """只有函数调用会被拦截，同名的列别名不受影响"""
    result = SecurityValidator.validate_sql_query("SELECT Amount AS read_count, Region AS region_scan FROM Sales")
    assert result.is_valid


def test_unparseable_query_rejected():
    """解析失败的查询不予执行"""
    result = SecurityValidator.validate_sql_query("SELECT FROM WHERE (")
    assert not result.is_valid
    assert "parsed" in result.error


def test_comment_only_query_rejected():
    assert not SecurityValidator.validate_sql_query("-- nothing here").is_valid


def test_non_select_statement_rejected():
    """解析器判定的语句类型必须是 SELECT"""
    result = SecurityValidator.validate_sql_query("VALUES (1), (2)")
    assert not result.is_valid


def test_mask_query():
    """字面量先于注释处理"""
    assert SecurityValidator.mask_query("SELECT '--' AS a -- note") == "SELECT '' AS a  "
    assert SecurityValidator.mask_query("SELECT $$ DROP $$, 'it''s' /* x */") == "SELECT '', ''  "
    assert SecurityValidator.mask_query('SELECT "read_text"(1)') == "SELECT   read_text  (1)"
