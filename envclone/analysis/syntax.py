"""Statement checks for generated SQL.

Two levels of checking are offered:

- a shape check every generated statement must pass (leading keyword and
  terminating semicolon), violations of which indicate a generator bug
- a best-effort parse with sqlglot's PostgreSQL dialect, whose failures are
  only reported as warnings because sqlglot does not cover every DDL form
"""

from dataclasses import dataclass, field

import sqlglot
from sqlglot.errors import ParseError, TokenError

from ..core.logging import get_logger
from .errors import SyntaxValidationError
from .normalize import SQL_TOKEN_PATTERN

logger = get_logger(__name__)

# Leading keywords an operation may open with
OPERATION_KEYWORDS = ("CREATE", "ALTER", "DROP", "INSERT", "UPDATE", "DELETE")
# Statements after the first may also attach comments to what it created
STATEMENT_KEYWORDS = (*OPERATION_KEYWORDS, "COMMENT")


def split_statements(sql: str) -> list[str]:
    """Split SQL text on semicolons outside literals, dollar quotes and comments.

    Each returned statement keeps its terminating semicolon.
    """
    statements: list[str] = []
    start = 0
    position = 0
    protected = [(m.start(), m.end()) for m in SQL_TOKEN_PATTERN.finditer(sql)]

    while position < len(sql):
        span = next((s for s in protected if s[0] <= position < s[1]), None)
        if span is not None:
            position = span[1]
            continue
        if sql[position] == ";":
            statements.append(sql[start : position + 1].strip())
            start = position + 1
        position += 1

    tail = sql[start:].strip()
    if tail:
        statements.append(tail)
    return [s for s in statements if s]


def strip_leading_comments(statement: str) -> str:
    lines = statement.strip().splitlines()
    while lines and (not lines[0].strip() or lines[0].lstrip().startswith("--")):
        lines.pop(0)
    return "\n".join(lines).strip()


def check_statement_shape(sql: str) -> None:
    """Check that every statement in ``sql`` has the expected shape.

    Raises:
        SyntaxValidationError: If a statement has an unexpected leading
            keyword (COMMENT is only accepted after the first statement) or
            is not terminated with a semicolon
    """
    statements = split_statements(sql)
    if not statements:
        raise SyntaxValidationError("Operation contains no SQL statements", sql)

    for position, statement in enumerate(statements):
        body = strip_leading_comments(statement)
        keyword = body.split(None, 1)[0].upper() if body else ""
        allowed = STATEMENT_KEYWORDS if position else OPERATION_KEYWORDS
        if keyword not in allowed:
            raise SyntaxValidationError(
                f"Statement starts with unexpected keyword '{keyword}'", statement
            )
        if not body.endswith(";"):
            raise SyntaxValidationError("Statement is not terminated with ';'", statement)


@dataclass
class ParseReport:
    """Outcome of the best-effort parse of a batch of SQL."""

    parsed: int = 0
    warnings: list[str] = field(default_factory=list)

    @property
    def is_clean(self) -> bool:
        return not self.warnings


def parse_statements(sql: str, dialect: str = "postgres") -> ParseReport:
    """Parse each statement with sqlglot, collecting failures as warnings."""
    report = ParseReport()
    for statement in split_statements(sql):
        body = strip_leading_comments(statement)
        if not body:
            continue
        try:
            sqlglot.parse(body, dialect=dialect)
            report.parsed += 1
        except (ParseError, TokenError) as e:
            first_line = body.splitlines()[0]
            message = str(e).splitlines()[0] if str(e) else type(e).__name__
            report.warnings.append(f"Could not parse '{first_line}': {message}")
            logger.debug("SQL parse failed", statement=first_line, error=message)
    return report
