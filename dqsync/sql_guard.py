"""SQL guard for user-supplied consistency queries.

Consistency checks embed operator-written queries as CTEs of the compiled
statement, so each one must be a single read-only SELECT (or WITH ...
SELECT). Comments are removed before embedding; quoted literals and
backtick identifiers are kept as written but ignored when looking for
forbidden keywords and statement separators.
"""

import re


# Statements that write or change permissions; matched as whole words
FORBIDDEN_KEYWORDS = (
    "insert", "update", "delete", "merge", "truncate", "create",
    "drop", "alter", "grant", "revoke", "call", "execute",
)

# Literals first so that "--" or "/*" inside quotes is never read as a comment
_TOKEN = re.compile(
    r"'(?:\\.|[^'\\])*'"
    r'|"(?:\\.|[^"\\])*"'
    r"|`[^`]*`"
    r"|--[^\n]*"
    r"|/\*.*?\*/",
    re.DOTALL,
)
_FORBIDDEN = re.compile(r"\b(" + "|".join(FORBIDDEN_KEYWORDS) + r")\b")


class UnsafeQueryError(ValueError):
    """A user query is not a single read-only statement."""
    pass


def _is_comment(token: str) -> bool:
    return token.startswith("--") or token.startswith("/*")


def strip_comments(sql: str) -> str:
    """Remove -- and /* */ comments, leaving quoted text untouched."""
    return _TOKEN.sub(lambda m: "" if _is_comment(m.group(0)) else m.group(0), sql)


def _blank_literals(sql: str) -> str:
    """Comments removed and every quoted token emptied, for scanning only."""
    def blank(match: re.Match) -> str:
        token = match.group(0)
        return "" if _is_comment(token) else token[0] * 2

    return _TOKEN.sub(blank, sql)


def validate_readonly_sql(sql: str) -> None:
    """Reject anything but one read-only query.

    Raises:
        UnsafeQueryError: On an empty query, a query not starting with
            SELECT/WITH, a forbidden keyword, or more than one statement.
    """
    body = _blank_literals(sql).strip()
    words = " ".join(body.lower().split())

    if not words:
        raise UnsafeQueryError("Query is empty once comments are removed")

    if not re.match(r"(select|with)\b", words):
        raise UnsafeQueryError(f"Query must start with SELECT or WITH, got: {words[:50]!r}")

    match = _FORBIDDEN.search(words)
    if match:
        raise UnsafeQueryError(f"Query is not read-only: found keyword {match.group(1)}")

    # a single trailing semicolon is tolerated
    if ";" in body.rstrip(";"):
        raise UnsafeQueryError("Multi-statement SQL is not allowed in a consistency query")


def prepare_subquery(sql: str) -> str:
    """Validate a user query and return the body to embed as a CTE.

    Comments are dropped (a trailing -- comment would swallow the closing
    parenthesis of the CTE) and so is the trailing semicolon. Literals are
    embedded exactly as written.
    """
    validate_readonly_sql(sql)
    return strip_comments(sql).strip().rstrip(";").strip()
