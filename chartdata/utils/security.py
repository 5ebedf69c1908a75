"""标识符清洗与自定义 SQL 校验"""

import re
import threading
from dataclasses import dataclass
from typing import Any, Dict, Iterable, FrozenSet, List, Optional

import duckdb

from chartdata.utils.logger import log
from chartdata.core.constants import (
    BLOCKED_SQL_FUNCTION_PREFIXES,
    BLOCKED_SQL_FUNCTION_SUFFIXES,
    BLOCKED_SQL_FUNCTIONS,
    BLOCKED_SQL_KEYWORDS,
    BLOCKED_SQL_PREFIXES,
    EXEC_PREFIXES,
    MAX_CUSTOM_SELECTS,
    READ_ONLY_PREFIXES,
)

_NON_WORD = re.compile(r"[^A-Za-z0-9_]")
# 字符串字面量、$tag$ 字符串、引号标识符和注释一次扫描，先出现者优先
_MASKABLE = re.compile(
    r"(?P<literal>'(?:[^']|'')*'|\$(?P<tag>[A-Za-z_]\w*|)\$.*?\$(?P=tag)\$)"
    r"|(?P<ident>\"(?:[^\"]|\"\")*\")"
    r"|(?P<comment>--[^\n]*|/\*.*?\*/)",
    re.DOTALL
)
_WORD = re.compile(r"\b[A-Za-z_][A-Za-z0-9_]*\b")
_FUNCTION_CALL = re.compile(r"\b([A-Za-z_][A-Za-z0-9_]*)\s*\(")
_QUOTED_SOURCE = re.compile(r"\b(?:FROM|JOIN)\s+''", re.IGNORECASE)
_EXEC_TARGET = re.compile(r"^EXEC(?:UTE)?\s+([\[\]A-Za-z0-9_.]+)", re.IGNORECASE)
# 模块级函数共用 DuckDB 默认连接，解析需串行
_PARSER_LOCK = threading.Lock()


def sanitize(raw: Any) -> str:
    """去掉 [A-Za-z0-9_] 以外的所有字符"""
    if raw is None:
        return ""
    return _NON_WORD.sub("", str(raw))


class Identifier:
    """
    始终经过清洗的 SQL 标识符

    构造时即执行清洗，因此 Identifier 不可能把标点带进 SQL 文本。
    """

    __slots__ = ("_name",)

    def __init__(self, raw: Any):
        object.__setattr__(self, "_name", sanitize(raw))

    def __setattr__(self, key, value):
        raise AttributeError("Identifier is immutable")

    @property
    def name(self) -> str:
        return self._name

    @property
    def quoted(self) -> str:
        return f'"{self._name}"'

    def __bool__(self) -> bool:
        return bool(self._name)

    def __eq__(self, other) -> bool:
        if isinstance(other, Identifier):
            return self._name == other._name
        return NotImplemented

    def __hash__(self) -> int:
        return hash(self._name)

    def __str__(self) -> str:
        return self.quoted

    def __repr__(self) -> str:
        return f"Identifier({self._name!r})"


@dataclass(frozen=True)
class SQLValidationResult:
    """自定义 SQL 校验结果"""
    is_valid: bool
    sanitized_query: Optional[str] = None
    error: Optional[str] = None
    is_exec: bool = False


def _mask(match: "re.Match[str]") -> str:
    if match.group("literal") is not None:
        return "''"
    if match.group("ident") is not None:
        # 引号标识符保留其中的单词，函数名加引号也逃不过检查
        return " " + _NON_WORD.sub(" ", match.group("ident")) + " "
    return " "


def split_statements(query: str) -> List["duckdb.Statement"]:
    """
    用 DuckDB 自身的解析器拆分语句

    Args:
        query: SQL 文本

    Returns:
        解析出的语句列表

    Raises:
        duckdb.Error: 无法解析
    """
    with _PARSER_LOCK:
        return duckdb.extract_statements(query)


class SecurityValidator:
    """图表查询安全检查"""

    # 查询规格的上限
    MAX_FILTERS = 20
    MAX_GROUP_BY = 10
    MAX_Y_AXIS = 20

    @classmethod
    def normalize_procedure_name(cls, name: str) -> str:
        """
        规范化存储过程名称，用于白名单匹配

        去掉方括号和库名、架构名前缀后转为大写：
        "[REPORTS].[dbo].[sp_Sales]" -> "SP_SALES"。
        """
        if not name:
            return ""
        cleaned = name.replace("[", "").replace("]", "")
        return cleaned.split(".")[-1].strip().upper()

    @classmethod
    def build_whitelist(cls, procedures: Iterable[str]) -> FrozenSet[str]:
        """由原始过程名构建规范化白名单"""
        return frozenset(
            n for n in (cls.normalize_procedure_name(p) for p in procedures) if n
        )

    @classmethod
    def mask_query(cls, query: str) -> str:
        """
        遮蔽字面量与注释

        字符串（含 $$...$$）替换为 ''，注释替换为空格。单次扫描，
        注释符号出现在字面量里时不会被当成注释。
        """
        return _MASKABLE.sub(_mask, query)

    @classmethod
    def _strip_terminator(cls, query: str) -> str:
        stripped = query.strip()
        if stripped.endswith(";"):
            stripped = stripped[:-1].rstrip()
        return stripped

    @classmethod
    def validate_exec_statement(cls, query: str, whitelist: FrozenSet[str]) -> SQLValidationResult:
        """
        按存储过程白名单校验 EXEC 语句

        Args:
            query: 以 EXEC/EXECUTE 开头、已去除首尾空白的查询
            whitelist: 规范化后的过程名

        Returns:
            SQLValidationResult
        """
        match = _EXEC_TARGET.match(query)
        if not match:
            return SQLValidationResult(False, error="Invalid EXEC syntax")

        procedure = match.group(1)
        if cls.normalize_procedure_name(procedure) not in whitelist:
            log.warning(f"存储过程不在白名单中: {procedure}")
            return SQLValidationResult(
                False,
                error=f'Stored procedure "{procedure}" is not whitelisted'
            )

        if "--" in query or "/*" in query or ";" in query or "$" in query:
            return SQLValidationResult(False, error="Dangerous patterns detected in EXEC statement")
        if len(re.findall(r"\bEXEC(?:UTE)?\b", query, re.IGNORECASE)) > 1:
            return SQLValidationResult(False, error="Nested EXEC statements are not allowed")

        return SQLValidationResult(True, sanitized_query=query, is_exec=True)

    @classmethod
    def check_tokens(cls, code: str) -> Optional[str]:
        """
        检查遮蔽后的查询文本

        Args:
            code: mask_query 的结果

        Returns:
            错误信息；通过时为 None
        """
        words = [w.upper() for w in _WORD.findall(code)]

        for word in words:
            if word in BLOCKED_SQL_KEYWORDS or word.startswith(BLOCKED_SQL_PREFIXES):
                log.warning(f"自定义查询包含禁止的关键词: {word}")
                return f"Keyword not allowed: {word}"

        for name in (n.upper() for n in _FUNCTION_CALL.findall(code)):
            if (
                name in BLOCKED_SQL_FUNCTIONS
                or name.startswith(BLOCKED_SQL_FUNCTION_PREFIXES)
                or name.endswith(BLOCKED_SQL_FUNCTION_SUFFIXES)
            ):
                log.warning(f"自定义查询调用了禁止的函数: {name}")
                return f"Function not allowed: {name}"

        if _QUOTED_SOURCE.search(code):
            log.warning("自定义查询试图直接读取文件")
            return "Reading files is not allowed"

        if words.count("SELECT") > MAX_CUSTOM_SELECTS:
            return f"Query complexity too high. Maximum {MAX_CUSTOM_SELECTS} SELECT statements allowed"

        return None

    @classmethod
    def validate_sql_query(cls, query: Any, whitelist: Iterable[str] = frozenset()) -> SQLValidationResult:
        """
        校验自定义 SQL

        只放行单条只读 SELECT（含 WITH），或调用白名单内存储过程的 EXEC。
        语句个数和类型由 DuckDB 解析器判定，查询文本本身不做改写。

        Args:
            query: 原始 SQL
            whitelist: EXEC 允许调用的存储过程

        Returns:
            SQLValidationResult，sanitized_query 为去掉结尾分号的原文
        """
        if not isinstance(query, str) or not query.strip():
            return SQLValidationResult(False, error="Query must be a non-empty string")

        if not isinstance(whitelist, frozenset):
            whitelist = cls.build_whitelist(whitelist)

        trimmed = cls._strip_terminator(query)
        if _EXEC_TARGET.match(trimmed) or trimmed.upper() in EXEC_PREFIXES:
            return cls.validate_exec_statement(trimmed, whitelist)

        try:
            statements = split_statements(trimmed)
        except duckdb.Error as e:
            log.warning(f"自定义查询无法解析: {e}")
            return SQLValidationResult(False, error=f"Query could not be parsed: {e}")

        if not statements:
            return SQLValidationResult(False, error="Query cannot be empty")
        if len(statements) > 1:
            log.warning("拒绝包含多条语句的自定义查询")
            return SQLValidationResult(False, error="Only a single SQL statement is allowed")

        code = cls.mask_query(trimmed)
        words = _WORD.findall(code)
        if (
            statements[0].type != duckdb.StatementType.SELECT
            or not words
            or words[0].upper() not in READ_ONLY_PREFIXES
        ):
            return SQLValidationResult(
                False,
                error="Only SELECT queries or EXEC statements (for whitelisted procedures) are allowed"
            )

        error = cls.check_tokens(code)
        if error:
            return SQLValidationResult(False, error=error)

        return SQLValidationResult(True, sanitized_query=trimmed)

    @classmethod
    def validate_query_complexity(cls, source: Dict[str, Any]) -> bool:
        """
        检查查询规格的规模上限

        Args:
            source: ChartDataSource 的字典形式

        Returns:
            未超限时为 True
        """
        if len(source.get("filters") or []) > cls.MAX_FILTERS:
            log.warning("过滤条件过多")
            return False

        group_by = source.get("group_by") or []
        if isinstance(group_by, list) and len(group_by) > cls.MAX_GROUP_BY:
            log.warning("groupBy 列过多")
            return False

        if len(source.get("y_axis") or []) > cls.MAX_Y_AXIS:
            log.warning("yAxis 列过多")
            return False

        return True
