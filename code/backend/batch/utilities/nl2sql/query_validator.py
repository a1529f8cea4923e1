"""
Query Guardrail for NL2SQL security enforcement.

This module decides whether a generated SQL statement may run. It is a
pure function of the candidate text and the domain's declared schema: no
database connection, no language model, no hidden state. Anything it
cannot conclusively classify as safe is rejected.
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, FrozenSet, List, Optional, Set, Tuple, Union

import sqlparse
from sqlparse import tokens as T
from sqlparse.exceptions import SQLParseError

from ..context_store import DomainContext, TableSpec

logger = logging.getLogger(__name__)


class RejectionReason(str, Enum):
    """Stable reason codes carried by a Rejected verdict."""

    MALFORMED_SQL = "MalformedSQL"
    MULTIPLE_STATEMENTS = "MultipleStatements"
    DISALLOWED_STATEMENT_TYPE = "DisallowedStatementType"
    SYSTEM_NAMESPACE = "SystemNamespace"
    UNKNOWN_TABLE = "UnknownTable"
    UNKNOWN_COLUMN = "UnknownColumn"
    UNBOUNDED_CROSS_JOIN = "UnboundedCrossJoin"
    INJECTION_PATTERN = "InjectionPattern"
    DISALLOWED_FUNCTION = "DisallowedFunction"
    AMBIGUOUS_CONSTRUCT = "AmbiguousConstruct"


@dataclass(frozen=True)
class Accepted:
    """The candidate is safe to execute as ``normalized_text``."""

    normalized_text: str

    def to_dict(self) -> dict:
        return {"verdict": "Accepted"}


@dataclass(frozen=True)
class Rejected:
    """The candidate must not run."""

    reason_code: RejectionReason
    detail: str

    def describe(self) -> str:
        """One-line reason fed back to the generator."""
        return f"{self.reason_code.value}: {self.detail}"

    def to_dict(self) -> dict:
        return {"verdict": "Rejected", "reason_code": self.reason_code.value}


GuardrailVerdict = Union[Accepted, Rejected]


# Namespaces that expose catalog, account or host metadata.
SYSTEM_NAMESPACES = frozenset(
    {
        "information_schema",
        "pg_catalog",
        "pg_toast",
        "sys",
        "mysql",
        "performance_schema",
        "snowflake",
        "snowflake_sample_data",
        "account_usage",
        "organization_usage",
        "sqlite_master",
        "sqlite_schema",
        "sqlite_temp_master",
        "sqlite_temp_schema",
        "sqlite_sequence",
        "dual",
    }
)
SYSTEM_PREFIXES = ("pg_", "sqlite_", "svv_", "stl_", "stv_", "svl_")

# Words that mean the statement writes, changes privileges or controls a
# transaction, wherever they appear outside a literal.
FORBIDDEN_WORDS = frozenset(
    {
        "INSERT", "UPDATE", "DELETE", "MERGE", "UPSERT",
        "CREATE", "ALTER", "DROP", "TRUNCATE", "RENAME",
        "GRANT", "REVOKE", "DENY",
        "COMMIT", "ROLLBACK", "SAVEPOINT", "BEGIN", "TRANSACTION",
        "SET", "USE", "CALL", "EXEC", "EXECUTE", "PREPARE", "DEALLOCATE", "DECLARE",
        "COPY", "PUT", "UNLOAD", "LOAD", "INTO", "OUTFILE", "DUMPFILE",
        "LOCK", "UNLOCK", "VACUUM", "ATTACH", "DETACH", "PRAGMA",
        "REFRESH", "REINDEX", "HANDLER",
    }
)

BLOCKED_FUNCTIONS = frozenset(
    {
        "SLEEP", "BENCHMARK", "WAITFOR",
        "LOAD_FILE", "READFILE", "WRITEFILE", "LOAD_EXTENSION",
        "DBLINK", "OPENROWSET", "OPENQUERY", "OPENDATASOURCE",
        "EXEC", "EXECUTE", "EVAL",
        "CHAR", "CHR", "UNHEX",
        "IDENTIFIER", "TABLE", "RESULT_SCAN", "GET_DDL", "FLATTEN",
        "READ_CSV", "READ_CSV_AUTO", "READ_PARQUET", "READ_JSON", "READ_JSON_AUTO",
        "LO_IMPORT", "LO_EXPORT", "QUERY_TO_XML",
    }
)
BLOCKED_FUNCTION_PREFIXES = ("SYSTEM$", "XP_", "SP_", "PG_", "DBMS_", "UTL_", "SQLITE_")

SET_OPERATIONS = frozenset({"UNION", "INTERSECT", "EXCEPT", "MINUS"})

# Reserved syntax, date parts, type names and niladic functions. A bare word
# outside this set is an identifier and must resolve against the schema.
SYNTAX_WORDS = frozenset(
    {
        "SELECT", "FROM", "WHERE", "AND", "OR", "NOT", "IN", "IS", "NULL", "AS",
        "ON", "USING", "GROUP", "ORDER", "BY", "HAVING", "LIMIT", "OFFSET",
        "ASC", "DESC", "DISTINCT", "ALL", "ANY", "SOME", "CASE", "WHEN", "THEN",
        "ELSE", "END", "BETWEEN", "LIKE", "ILIKE", "RLIKE", "SIMILAR", "ESCAPE",
        "EXISTS", "WITH", "RECURSIVE", "JOIN", "INNER", "LEFT", "RIGHT", "FULL",
        "OUTER", "CROSS", "NATURAL", "LATERAL", "UNION", "INTERSECT", "EXCEPT",
        "MINUS", "OVER", "PARTITION", "ROWS", "RANGE", "GROUPS", "PRECEDING",
        "FOLLOWING", "UNBOUNDED", "CURRENT", "ROW", "WINDOW", "QUALIFY", "FILTER",
        "WITHIN", "INTERVAL", "TRUE", "FALSE", "UNKNOWN", "NULLS", "FIRST", "LAST",
        "TOP", "FETCH", "NEXT", "ONLY", "PERCENT", "TIES", "COLLATE", "AT", "TIME",
        "ZONE", "CAST", "EXTRACT", "FOR", "TO", "IGNORE", "RESPECT", "BOTH",
        "LEADING", "TRAILING",
        "YEAR", "QUARTER", "MONTH", "WEEK", "DAY", "DAYOFWEEK", "DAYOFYEAR", "DOW",
        "DOY", "HOUR", "MINUTE", "SECOND", "EPOCH", "MILLISECOND", "MICROSECOND",
        "ISOWEEK", "ISOYEAR", "ISODOW",
        "INT", "INTEGER", "BIGINT", "SMALLINT", "TINYINT", "DECIMAL", "NUMERIC",
        "NUMBER", "FLOAT", "DOUBLE", "PRECISION", "REAL", "VARCHAR", "CHARACTER",
        "TEXT", "STRING", "DATE", "DATETIME", "TIMESTAMP", "TIMESTAMP_NTZ",
        "TIMESTAMP_TZ", "BOOLEAN", "BOOL",
        "CURRENT_DATE", "CURRENT_TIME", "CURRENT_TIMESTAMP", "LOCALTIME",
        "LOCALTIMESTAMP",
    }
)

_COMMENT_MARKERS = ("--", "/*", "*/", ";")


@dataclass(frozen=True)
class GuardrailConfig:
    """Configuration for the query guardrail."""

    default_row_limit: int = 1000
    blocked_functions: FrozenSet[str] = BLOCKED_FUNCTIONS
    system_namespaces: FrozenSet[str] = SYSTEM_NAMESPACES


class GuardrailViolation(Exception):
    """Internal signal carrying the first failed check."""

    def __init__(self, reason: RejectionReason, detail: str):
        self.reason = reason
        self.detail = detail
        super().__init__(detail)


class _Virtual:
    """Marker for CTEs and derived tables, whose columns are not declared."""

    def __repr__(self) -> str:
        return "<virtual>"


VIRTUAL = _Virtual()


@dataclass
class _Item:
    """A significant token, with dotted identifier chains merged."""

    kind: str  # kw | ref | punct | literal | other
    value: str
    leaf_index: int
    parts: Tuple[str, ...] = ()
    ttype: object = None


@dataclass
class _Block:
    """One nesting level: the statement itself or a parenthesised group."""

    is_query: bool = False
    clause: Optional[str] = None
    expect_table: bool = False
    after_table: bool = False
    last_source: object = None
    cross_sources: int = 0
    open_join: bool = False
    has_where: bool = False
    has_column_ref: bool = False
    expect_cte: bool = False
    opened_by: Optional[str] = None


@dataclass
class _ScanResult:
    tables_used: List[TableSpec] = field(default_factory=list)
    alias_map: Dict[str, object] = field(default_factory=dict)
    cte_names: Set[str] = field(default_factory=set)
    output_aliases: Set[str] = field(default_factory=set)
    column_refs: List[Tuple[str, ...]] = field(default_factory=list)
    limit_leaf: Optional[int] = None
    limit_value: Optional[int] = None
    offset_leaf: Optional[int] = None


def _is_word(token) -> bool:
    ttype = token.ttype
    if ttype in T.Name.Placeholder:
        return False
    return ttype in T.Name or ttype in T.Keyword or ttype in T.String.Symbol


def _identifier_text(token) -> str:
    value = token.value
    if token.ttype in T.String.Symbol or value[:1] in ('"', "`"):
        return value[1:-1]
    if value.startswith("[") and value.endswith("]"):
        return value[1:-1]
    return value


def _is_quoted(token) -> bool:
    return token.ttype in T.String.Symbol or token.value[:1] in ('"', "`", "[")


def _normalize_keyword(value: str) -> str:
    return " ".join(value.upper().split())


def _is_constant_comparison(window: List[_Item]) -> bool:
    return (
        len(window) == 3
        and window[0].kind == "literal"
        and window[1].kind == "other"
        and window[1].ttype in T.Operator.Comparison
        and window[2].kind == "literal"
    )


class _StatementScanner:
    """Walks the flattened tokens of one statement and enforces the rules."""

    def __init__(self, context: DomainContext, config: GuardrailConfig):
        self.context = context
        self.config = config

    # -- tokenization -------------------------------------------------------

    def build_items(self, leaves: list) -> List[_Item]:
        significant = [
            (index, token)
            for index, token in enumerate(leaves)
            if not token.is_whitespace
        ]
        items: List[_Item] = []
        position = 0
        while position < len(significant):
            leaf_index, token = significant[position]
            ttype = token.ttype

            if ttype in T.Comment:
                raise GuardrailViolation(
                    RejectionReason.INJECTION_PATTERN, "comments are not permitted"
                )
            if ttype in T.Error:
                raise GuardrailViolation(
                    RejectionReason.MALFORMED_SQL,
                    f"unexpected character {token.value!r}",
                )
            if ttype in T.Name.Placeholder:
                raise GuardrailViolation(
                    RejectionReason.AMBIGUOUS_CONSTRUCT,
                    "unbound parameter placeholders are not permitted",
                )
            if ttype in T.Assignment or ttype in T.Command:
                raise GuardrailViolation(
                    RejectionReason.AMBIGUOUS_CONSTRUCT,
                    f"unsupported construct {token.value!r}",
                )

            if _is_word(token):
                parts = [_identifier_text(token)]
                quoted = _is_quoted(token)
                ahead = position + 1
                while (
                    ahead + 1 < len(significant)
                    and significant[ahead][1].ttype in T.Punctuation
                    and significant[ahead][1].value == "."
                    and (
                        _is_word(significant[ahead + 1][1])
                        or significant[ahead + 1][1].ttype in T.Wildcard
                    )
                ):
                    following = significant[ahead + 1][1]
                    parts.append(
                        "*"
                        if following.ttype in T.Wildcard
                        else _identifier_text(following)
                    )
                    ahead += 2

                word = _normalize_keyword(token.value)
                is_syntax = (
                    len(parts) == 1
                    and not quoted
                    and (
                        " " in word
                        or word in SYNTAX_WORDS
                        or ttype in T.Name.Builtin
                    )
                )
                if is_syntax:
                    items.append(_Item("kw", word, leaf_index, ttype=ttype))
                else:
                    self._check_identifier_text(parts)
                    items.append(
                        _Item(
                            "ref",
                            ".".join(parts),
                            leaf_index,
                            parts=tuple(part.lower() for part in parts),
                            ttype=ttype,
                        )
                    )
                position = ahead
                continue

            if ttype in T.Punctuation:
                items.append(_Item("punct", token.value, leaf_index, ttype=ttype))
            elif ttype in T.Number.Hexadecimal:
                raise GuardrailViolation(
                    RejectionReason.INJECTION_PATTERN,
                    "hexadecimal literals are not permitted",
                )
            elif ttype in T.String.Single or ttype in T.Number:
                if ttype in T.String.Single:
                    self._check_string_literal(token.value)
                items.append(_Item("literal", token.value, leaf_index, ttype=ttype))
            elif ttype in T.Literal:
                raise GuardrailViolation(
                    RejectionReason.AMBIGUOUS_CONSTRUCT,
                    "dollar-quoted literals are not permitted",
                )
            else:
                items.append(_Item("other", token.value, leaf_index, ttype=ttype))
            position += 1

        return items

    def _check_string_literal(self, value: str) -> None:
        inner = value[1:-1]
        if "'" in inner or "\\" in inner:
            raise GuardrailViolation(
                RejectionReason.INJECTION_PATTERN,
                "string literal contains an embedded quote or escape",
            )
        for marker in _COMMENT_MARKERS:
            if marker in inner:
                raise GuardrailViolation(
                    RejectionReason.INJECTION_PATTERN,
                    f"string literal contains {marker!r}",
                )

    def _check_identifier_text(self, parts: List[str]) -> None:
        for part in parts:
            if any(ch in part for ch in "'\"`;") or any(
                marker in part for marker in _COMMENT_MARKERS
            ):
                raise GuardrailViolation(
                    RejectionReason.INJECTION_PATTERN,
                    "quoted identifier reopens a string or comment",
                )

    # -- statement shape ----------------------------------------------------

    def check_forbidden_words(self, leaves: list) -> None:
        for token in leaves:
            ttype = token.ttype
            if ttype in T.Keyword.DML and _normalize_keyword(token.value) != "SELECT":
                raise GuardrailViolation(
                    RejectionReason.DISALLOWED_STATEMENT_TYPE,
                    f"{_normalize_keyword(token.value)} statements are not permitted",
                )
            if ttype in T.Keyword.DDL:
                raise GuardrailViolation(
                    RejectionReason.DISALLOWED_STATEMENT_TYPE,
                    f"{_normalize_keyword(token.value)} statements are not permitted",
                )
            if (ttype in T.Keyword or ttype in T.Name) and not _is_quoted(token):
                for word in token.value.upper().split():
                    if word in FORBIDDEN_WORDS:
                        raise GuardrailViolation(
                            RejectionReason.DISALLOWED_STATEMENT_TYPE,
                            f"{word} is not permitted in a read-only query",
                        )

    # -- structural walk ----------------------------------------------------

    def scan(self, items: List[_Item]) -> _ScanResult:
        result = _ScanResult()
        stack = [_Block()]
        pending_alias = False

        for index, item in enumerate(items):
            block = stack[-1]
            previous = items[index - 1] if index > 0 else None
            following = items[index + 1] if index + 1 < len(items) else None

            if item.kind == "punct":
                pending_alias = False
                if item.value == "(":
                    child = _Block()
                    if block.clause == "from" and block.expect_table:
                        child.opened_by = "from"
                        block.expect_table = False
                    elif previous is not None and previous.kind == "ref" and (
                        block.clause == "with" and previous.parts[-1] in result.cte_names
                    ):
                        child.opened_by = "cte_columns"
                    stack.append(child)
                elif item.value == ")":
                    closed = stack.pop()
                    self._close_block(closed)
                    if closed.has_column_ref or closed.is_query:
                        self._note_predicate(stack[-1])
                    if closed.opened_by == "from":
                        stack[-1].after_table = True
                        stack[-1].last_source = VIRTUAL
                elif item.value == ",":
                    if block.is_query and block.clause in ("from", "on"):
                        block.clause = "from"
                        block.expect_table = True
                        block.after_table = False
                        block.cross_sources += 1
                    elif block.clause == "with":
                        block.expect_cte = True
                continue

            if item.kind == "kw":
                if (
                    block.is_query
                    and block.clause == "from"
                    and block.expect_table
                    and item.value != "LATERAL"
                ):
                    raise GuardrailViolation(
                        RejectionReason.UNKNOWN_TABLE,
                        f"{item.value.lower()} is a reserved word, not a table declared "
                        f"for domain {self.context.domain_id}",
                    )
                pending_alias = item.value == "AS"
                self._handle_keyword(item, index, items, block, len(stack) == 1, result)
                continue

            if item.kind == "literal" or item.kind == "other":
                pending_alias = False
                continue

            # identifier reference
            parts = item.parts
            is_call = following is not None and following.kind == "punct" and following.value == "("

            if pending_alias:
                pending_alias = False
                self._check_namespace(parts[:-1])
                self._define_alias(parts[-1], block, result)
                continue

            if is_call:
                if block.clause == "from" and block.expect_table:
                    raise GuardrailViolation(
                        RejectionReason.AMBIGUOUS_CONSTRUCT,
                        f"table function {item.value} is not permitted",
                    )
                if block.clause == "with" and block.expect_cte:
                    result.cte_names.add(parts[-1])
                    block.expect_cte = False
                    continue
                self._check_function(parts)
                continue

            if block.clause == "with" and block.expect_cte:
                result.cte_names.add(parts[-1])
                block.expect_cte = False
                continue

            if block.opened_by == "cte_columns":
                result.output_aliases.add(parts[-1])
                continue

            if block.is_query and block.clause == "from":
                if block.expect_table:
                    source = self._resolve_table(parts, result)
                    block.expect_table = False
                    block.after_table = True
                    block.last_source = source
                    continue
                if block.after_table and len(parts) == 1:
                    result.alias_map[parts[0]] = block.last_source
                    block.after_table = False
                    continue

            if block.clause == "select" and len(parts) == 1 and previous is not None and (
                previous.kind in ("ref", "literal")
                or (previous.kind == "punct" and previous.value == ")")
                or (previous.kind == "kw" and previous.value == "END")
            ):
                result.output_aliases.add(parts[0])
                continue

            self._check_namespace(parts[:-1])
            result.column_refs.append(parts)
            self._note_predicate(block)

        self._close_block(stack[0])
        return result

    def _handle_keyword(
        self,
        item: _Item,
        index: int,
        items: List[_Item],
        block: _Block,
        top_level: bool,
        result: _ScanResult,
    ) -> None:
        keyword = item.value
        first_word = keyword.split()[0]

        if first_word in SET_OPERATIONS:
            raise GuardrailViolation(
                RejectionReason.INJECTION_PATTERN,
                f"set operation {keyword} is not permitted",
            )
        if keyword in ("TOP", "FETCH"):
            raise GuardrailViolation(
                RejectionReason.AMBIGUOUS_CONSTRUCT,
                f"{keyword} row limiting is not supported; use LIMIT",
            )
        if keyword == "LATERAL":
            raise GuardrailViolation(
                RejectionReason.AMBIGUOUS_CONSTRUCT, "LATERAL is not permitted"
            )

        if keyword == "SELECT":
            block.is_query = True
            block.clause = "select"
            block.expect_table = False
            block.after_table = False
        elif keyword == "WITH" and block.clause is None:
            block.clause = "with"
            block.expect_cte = True
        elif keyword == "FROM" and block.is_query and block.clause == "select":
            block.clause = "from"
            block.expect_table = True
            block.after_table = False
        elif keyword.endswith("JOIN") and block.is_query and block.clause in ("from", "on"):
            if first_word == "NATURAL":
                raise GuardrailViolation(
                    RejectionReason.AMBIGUOUS_CONSTRUCT,
                    "NATURAL joins cannot be checked against the declared schema",
                )
            if first_word == "CROSS" or block.open_join:
                block.cross_sources += 1
            block.open_join = first_word != "CROSS"
            block.clause = "from"
            block.expect_table = True
            block.after_table = False
        elif keyword in ("ON", "USING") and block.clause == "from":
            block.clause = "on"
            block.after_table = False
        elif keyword == "WHERE":
            block.clause = "where"
        elif keyword in ("GROUP BY", "GROUP", "ORDER BY", "ORDER", "HAVING", "QUALIFY", "WINDOW"):
            block.clause = keyword.split()[0].lower()
        elif keyword == "OR":
            self._check_tautology(items, index)
        elif keyword == "LIMIT":
            block.clause = "limit"
            if top_level:
                self._record_limit(items, index, result)
        elif keyword == "OFFSET":
            block.clause = "offset"
            if top_level:
                result.offset_leaf = item.leaf_index

    def _record_limit(self, items: List[_Item], index: int, result: _ScanResult) -> None:
        if result.limit_leaf is not None:
            raise GuardrailViolation(
                RejectionReason.AMBIGUOUS_CONSTRUCT, "more than one LIMIT clause"
            )
        value_item = items[index + 1] if index + 1 < len(items) else None
        if (
            value_item is None
            or value_item.kind != "literal"
            or value_item.ttype not in T.Number.Integer
            or value_item.value.startswith("-")
        ):
            raise GuardrailViolation(
                RejectionReason.AMBIGUOUS_CONSTRUCT,
                "LIMIT must be a non-negative integer literal",
            )
        after = items[index + 2] if index + 2 < len(items) else None
        if after is not None and after.kind == "punct" and after.value == ",":
            raise GuardrailViolation(
                RejectionReason.AMBIGUOUS_CONSTRUCT,
                "LIMIT offset, count form is not supported",
            )
        result.limit_leaf = value_item.leaf_index
        result.limit_value = int(value_item.value)

    def _check_tautology(self, items: List[_Item], index: int) -> None:
        after = index + 1
        while after < len(items) and items[after].kind == "punct" and items[after].value == "(":
            after += 1
        before = index - 1
        while before >= 0 and items[before].kind == "punct" and items[before].value == ")":
            before -= 1
        for window in (items[after:after + 3], items[max(before - 2, 0):before + 1]):
            if _is_constant_comparison(window):
                raise GuardrailViolation(
                    RejectionReason.INJECTION_PATTERN,
                    "OR with a constant comparison is not permitted",
                )

    def _note_predicate(self, block: _Block) -> None:
        if block.clause == "on":
            block.open_join = False
        elif block.clause == "where":
            block.has_where = True
        elif block.clause is None:
            block.has_column_ref = True

    def _define_alias(self, name: str, block: _Block, result: _ScanResult) -> None:
        if block.is_query and block.clause == "from" and block.after_table:
            result.alias_map[name] = block.last_source
            block.after_table = False
        elif block.clause == "with":
            result.cte_names.add(name)
        else:
            result.output_aliases.add(name)

    def _close_block(self, block: _Block) -> None:
        unbounded = block.cross_sources + (1 if block.open_join else 0)
        if unbounded and not block.has_where:
            raise GuardrailViolation(
                RejectionReason.UNBOUNDED_CROSS_JOIN,
                "cross join without a filter predicate",
            )

    # -- name resolution ----------------------------------------------------

    def _is_system_name(self, name: str) -> bool:
        return name in self.config.system_namespaces or name.startswith(SYSTEM_PREFIXES)

    def _check_namespace(self, qualifiers: Tuple[str, ...]) -> None:
        for name in qualifiers:
            if self._is_system_name(name):
                raise GuardrailViolation(
                    RejectionReason.SYSTEM_NAMESPACE,
                    f"{name} is a system namespace",
                )

    def _check_function(self, parts: Tuple[str, ...]) -> None:
        self._check_namespace(parts[:-1])
        if len(parts) > 1:
            raise GuardrailViolation(
                RejectionReason.DISALLOWED_FUNCTION,
                "schema-qualified functions are not permitted",
            )
        name = parts[-1].upper()
        if name in self.config.blocked_functions or name.startswith(BLOCKED_FUNCTION_PREFIXES):
            raise GuardrailViolation(
                RejectionReason.DISALLOWED_FUNCTION,
                f"function {name} is not permitted",
            )

    def _resolve_table(self, parts: Tuple[str, ...], result: _ScanResult) -> object:
        self._check_namespace(parts)
        if len(parts) > 3:
            raise GuardrailViolation(
                RejectionReason.AMBIGUOUS_CONSTRUCT,
                f"name {'.'.join(parts)} has too many parts",
            )
        if len(parts) == 1 and parts[0] in result.cte_names:
            return VIRTUAL

        matches = self.context.find_tables(parts)
        if len(matches) > 1:
            raise GuardrailViolation(
                RejectionReason.AMBIGUOUS_CONSTRUCT,
                f"table {'.'.join(parts)} matches more than one declared table",
            )
        if not matches:
            raise GuardrailViolation(
                RejectionReason.UNKNOWN_TABLE,
                f"table {'.'.join(parts)} is not declared for domain "
                f"{self.context.domain_id}",
            )
        table = matches[0]
        if table not in result.tables_used:
            result.tables_used.append(table)
        return table

    def check_columns(self, result: _ScanResult) -> None:
        scope_columns: Set[str] = set()
        for table in result.tables_used:
            scope_columns.update(table.column_names)
        open_names = scope_columns | result.output_aliases

        for parts in result.column_refs:
            name = parts[-1]
            if len(parts) == 1:
                if name not in open_names:
                    raise GuardrailViolation(
                        RejectionReason.UNKNOWN_COLUMN,
                        f"column {name} is not declared for the referenced tables",
                    )
                continue

            if len(parts) == 2:
                source = self._resolve_qualifier(parts[0], result)
            elif len(parts) == 3:
                matches = [
                    table for table in self.context.find_tables(parts[:2])
                ]
                if len(matches) != 1:
                    raise GuardrailViolation(
                        RejectionReason.UNKNOWN_TABLE,
                        f"table {parts[0]}.{parts[1]} is not declared",
                    )
                source = matches[0]
            else:
                raise GuardrailViolation(
                    RejectionReason.AMBIGUOUS_CONSTRUCT,
                    f"name {'.'.join(parts)} has too many parts",
                )

            if name == "*":
                continue
            if source is VIRTUAL:
                if name not in open_names:
                    raise GuardrailViolation(
                        RejectionReason.UNKNOWN_COLUMN,
                        f"column {name} is not declared for the referenced tables",
                    )
            elif name not in source.column_names:
                raise GuardrailViolation(
                    RejectionReason.UNKNOWN_COLUMN,
                    f"column {name} is not declared for table {source.qualified_name}",
                )

    def _resolve_qualifier(self, qualifier: str, result: _ScanResult) -> object:
        if qualifier in result.alias_map:
            return result.alias_map[qualifier]
        if qualifier in result.cte_names:
            return VIRTUAL
        candidates = [
            table for table in result.tables_used if table.table_name == qualifier
        ]
        if len(candidates) == 1:
            return candidates[0]
        if len(candidates) > 1:
            raise GuardrailViolation(
                RejectionReason.AMBIGUOUS_CONSTRUCT,
                f"qualifier {qualifier} matches more than one table",
            )
        raise GuardrailViolation(
            RejectionReason.UNKNOWN_COLUMN,
            f"qualifier {qualifier} does not name a table in the query",
        )


def _non_empty(statement) -> bool:
    for token in statement.flatten():
        if token.is_whitespace:
            continue
        if token.ttype in T.Punctuation and token.value == ";":
            continue
        return True
    return False


def _normalize(leaves: list, result: _ScanResult, row_limit: int) -> str:
    values = [token.value for token in leaves]

    # drop the statement terminator
    for index in range(len(leaves) - 1, -1, -1):
        token = leaves[index]
        if token.is_whitespace:
            continue
        if token.ttype in T.Punctuation and token.value == ";":
            values[index] = ""
            continue
        break

    if result.limit_leaf is not None:
        if result.limit_value > row_limit:
            values[result.limit_leaf] = str(row_limit)
        return "".join(values).strip()

    if result.offset_leaf is not None:
        values[result.offset_leaf] = f"LIMIT {row_limit} {values[result.offset_leaf]}"
        return "".join(values).strip()

    return f"{''.join(values).strip()} LIMIT {row_limit}"


def validate_query(
    text: str,
    context: DomainContext,
    config: Optional[GuardrailConfig] = None,
) -> GuardrailVerdict:
    """
    Validate one SQL statement against a domain's declared schema.

    Args:
        text: Candidate SQL text
        context: The domain whose schema is the closed world of allowed names
        config: Optional guardrail configuration

    Returns:
        Accepted with the normalized statement, or Rejected with a reason
    """
    config = config or GuardrailConfig()
    scanner = _StatementScanner(context, config)

    try:
        if not text or not text.strip():
            raise GuardrailViolation(RejectionReason.MALFORMED_SQL, "empty statement")

        try:
            statements = [s for s in sqlparse.parse(text) if _non_empty(s)]
        except SQLParseError as e:
            raise GuardrailViolation(
                RejectionReason.MALFORMED_SQL, f"statement could not be parsed: {e}"
            ) from e

        if not statements:
            raise GuardrailViolation(RejectionReason.MALFORMED_SQL, "empty statement")
        if len(statements) > 1:
            raise GuardrailViolation(
                RejectionReason.MULTIPLE_STATEMENTS,
                "only a single statement is permitted",
            )

        statement = statements[0]
        leaves = list(statement.flatten())

        depth = 0
        for token in leaves:
            if token.ttype in T.Punctuation and token.value == "(":
                depth += 1
            elif token.ttype in T.Punctuation and token.value == ")":
                depth -= 1
                if depth < 0:
                    break
        if depth != 0:
            raise GuardrailViolation(
                RejectionReason.MALFORMED_SQL, "unbalanced parentheses"
            )
        if any(token.ttype in T.Error for token in leaves):
            raise GuardrailViolation(
                RejectionReason.MALFORMED_SQL, "statement could not be tokenized"
            )

        scanner.check_forbidden_words(leaves)

        statement_type = statement.get_type()
        if statement_type == "UNKNOWN":
            raise GuardrailViolation(
                RejectionReason.MALFORMED_SQL, "statement is not recognizable SQL"
            )
        if statement_type != "SELECT":
            raise GuardrailViolation(
                RejectionReason.DISALLOWED_STATEMENT_TYPE,
                f"{statement_type} statements are not permitted",
            )

        items = scanner.build_items(leaves)
        result = scanner.scan(items)
        scanner.check_columns(result)

        return Accepted(_normalize(leaves, result, config.default_row_limit))

    except GuardrailViolation as violation:
        return Rejected(violation.reason, violation.detail)
    except Exception as e:
        logger.error("Guardrail could not classify statement: %s", type(e).__name__)
        return Rejected(
            RejectionReason.AMBIGUOUS_CONSTRUCT,
            "statement could not be conclusively classified",
        )


class QueryValidator:
    """
    Validates candidate SQL against one domain's declared schema.

    This class ensures that a candidate query:
    - Is a single read-only SELECT statement
    - Only references the domain's declared tables and columns
    - Avoids catalog namespaces, injection shapes and unbounded cross joins
    - Carries a row limit no larger than the configured default
    """

    def __init__(
        self,
        context: DomainContext,
        config: Optional[GuardrailConfig] = None,
    ):
        """
        Initialize the query validator.

        Args:
            context: The domain context the validator is bound to
            config: Optional guardrail configuration
        """
        self.context = context
        self.config = config or GuardrailConfig()

    def validate(self, candidate) -> GuardrailVerdict:
        """
        Validate a candidate query.

        Args:
            candidate: A CandidateQuery produced for this validator's domain

        Returns:
            Accepted(normalized_text) or Rejected(reason_code, detail)
        """
        if candidate.source != self.context.domain_id:
            return Rejected(
                RejectionReason.AMBIGUOUS_CONSTRUCT,
                f"candidate was generated for domain {candidate.source}",
            )

        verdict = validate_query(candidate.text, self.context, self.config)

        if isinstance(verdict, Rejected):
            logger.info(
                "Rejected candidate for domain %s (attempt %d): %s",
                self.context.domain_id,
                candidate.generation_attempt,
                verdict.reason_code.value,
            )
        else:
            logger.info(
                "Accepted candidate for domain %s (attempt %d)",
                self.context.domain_id,
                candidate.generation_attempt,
            )
        return verdict
