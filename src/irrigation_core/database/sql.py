"""
SQL text helpers.

Placeholder translation between the accepted caller styles (``?``, ``$n``,
``:name``) and each backend's native style. Translation only rewrites code
segments; quoted literals, quoted identifiers and comments pass through
untouched. Values are never interpolated, only placeholders are renamed.
"""

import re
from typing import Any, Dict, Iterator, List, Mapping, Optional, Sequence, Tuple, Union

Params = Union[Sequence[Any], Mapping[str, Any], None]

SQL_LOG_LIMIT = 200

# Non-code spans: 'literal', "identifier", -- line comment, /* block comment */
_NON_CODE = re.compile(
    r"'(?:[^']|'')*'"
    r'|"(?:[^"]|"")*"'
    r"|--[^\n]*"
    r"|/\*.*?\*/",
    re.DOTALL,
)

_DOLLAR_PARAM = re.compile(r"\$(\d+)")
_QMARK_PARAM = re.compile(r"\?(\d*)")
# :name but not ::cast and not the second colon of a cast
_NAMED_PARAM = re.compile(r"(?<![:\w]):([A-Za-z_]\w*)")

_STATEMENT_KINDS = ("SELECT", "INSERT", "UPDATE", "DELETE", "CREATE", "ALTER", "DROP")


def truncate_sql(sql: str, limit: int = SQL_LOG_LIMIT) -> str:
    """Collapse whitespace and cut SQL down to a loggable length."""
    text = " ".join(sql.split())
    if len(text) > limit:
        return text[:limit] + "..."
    return text


def statement_kind(sql: str) -> str:
    """Classify a statement by its leading keyword."""
    stripped = _NON_CODE.sub(" ", sql).lstrip().upper()
    if stripped.startswith("WITH"):
        # CTE: the verb follows the last closing parenthesis of the WITH list
        for kind in ("INSERT", "UPDATE", "DELETE"):
            if re.search(rf"\)\s*{kind}\b", stripped):
                return kind
        return "SELECT"
    for kind in _STATEMENT_KINDS:
        if stripped.startswith(kind):
            return kind
    return "OTHER"


def _segments(sql: str) -> Iterator[Tuple[bool, str]]:
    """Yield (is_code, text) pairs covering the whole statement."""
    pos = 0
    for match in _NON_CODE.finditer(sql):
        if match.start() > pos:
            yield True, sql[pos:match.start()]
        yield False, match.group(0)
        pos = match.end()
    if pos < len(sql):
        yield True, sql[pos:]


def _rewrite(sql: str, pattern: "re.Pattern[str]", replace) -> str:
    parts = []
    for is_code, text in _segments(sql):
        parts.append(pattern.sub(replace, text) if is_code else text)
    return "".join(parts)


def _has_placeholder(sql: str, pattern: "re.Pattern[str]") -> bool:
    return any(is_code and pattern.search(text) for is_code, text in _segments(sql))


def to_sqlite(sql: str, params: Params = None) -> Tuple[str, Union[Tuple[Any, ...], Dict[str, Any]]]:
    """
    Prepare a statement for sqlite3.

    ``$n`` becomes ``?n`` (SQLite's numbered form, so repeated references
    keep working). ``?`` and ``:name`` are already native.
    """
    if params is None:
        params = ()
    if isinstance(params, Mapping):
        return sql, dict(params)
    if _has_placeholder(sql, _DOLLAR_PARAM):
        sql = _rewrite(sql, _DOLLAR_PARAM, lambda m: f"?{m.group(1)}")
    return sql, tuple(params)


def to_postgres(sql: str, params: Params = None) -> Tuple[str, List[Any]]:
    """
    Prepare a statement for asyncpg, which only understands ``$n``.

    - named ``:name`` placeholders are numbered in order of first use
    - bare ``?`` placeholders are numbered left to right; ``?n`` maps to ``$n``
    - statements already using ``$n`` are left alone (so the jsonb ``?``
      operator stays usable in them)
    """
    if params is None:
        params = ()

    if isinstance(params, Mapping):
        order: List[str] = []

        def _named(match: "re.Match[str]") -> str:
            name = match.group(1)
            if name not in params:
                raise KeyError(f"Missing value for named parameter :{name}")
            if name not in order:
                order.append(name)
            return f"${order.index(name) + 1}"

        sql = _rewrite(sql, _NAMED_PARAM, _named)
        return sql, [params[name] for name in order]

    if not params or _has_placeholder(sql, _DOLLAR_PARAM):
        return sql, list(params)

    counter = 0

    def _positional(match: "re.Match[str]") -> str:
        nonlocal counter
        if match.group(1):
            return f"${match.group(1)}"
        counter += 1
        return f"${counter}"

    sql = _rewrite(sql, _QMARK_PARAM, _positional)
    return sql, list(params)


def split_statements(script: str) -> List[str]:
    """
    Split a migration script on top-level semicolons.

    Semicolons inside literals and comments are ignored. Dollar-quoted
    function bodies are not understood; keep those out of migration files.
    """
    statements: List[str] = []
    current: List[str] = []
    for is_code, text in _segments(script):
        if not is_code:
            is_comment = text.startswith("--") or text.startswith("/*")
            current.append(" " if is_comment else text)
            continue
        pieces = text.split(";")
        for piece in pieces[:-1]:
            current.append(piece)
            statement = "".join(current).strip()
            if statement:
                statements.append(statement)
            current = []
        current.append(pieces[-1])
    tail = "".join(current).strip()
    if tail:
        statements.append(tail)
    return statements


def param_count(params: Params) -> int:
    if params is None:
        return 0
    return len(params)


def first_row_id(rows: Sequence[Mapping[str, Any]]) -> Optional[Any]:
    """Return the ``id`` column of the first returned row, if any."""
    if rows and "id" in rows[0]:
        return rows[0]["id"]
    return None
