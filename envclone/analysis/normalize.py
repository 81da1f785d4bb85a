"""Normalization of SQL text fragments before comparison.

Function bodies, check clauses and policy expressions are compared after
collapsing whitespace outside quoted literals and, optionally, stripping SQL
comments.
"""

import re

# Quoted literals, dollar-quoted strings, line comments and block comments
SQL_TOKEN_PATTERN = re.compile(
    r"""
    (?P<single>'(?:[^']|'')*')
    | (?P<double>"(?:[^"]|"")*")
    | (?P<dollar>\$(?P<tag>[A-Za-z_]\w*|)\$.*?\$(?P=tag)\$)
    | (?P<line_comment>--[^\n]*)
    | (?P<block_comment>/\*.*?\*/)
    """,
    re.VERBOSE | re.DOTALL,
)
_WHITESPACE = re.compile(r"\s+")
_COMMENT_GROUPS = ("line_comment", "block_comment")


def normalize_sql_text(text: str | None, strip_comments: bool = True) -> str | None:
    """Collapse whitespace outside literals, optionally dropping comments.

    >>> normalize_sql_text("SELECT  1 -- one\\n  FROM t")
    'SELECT 1 FROM t'
    """
    if text is None:
        return None

    # (is_literal, text) segments; whitespace is only touched in code segments
    segments: list[tuple[bool, str]] = []
    position = 0
    for match in SQL_TOKEN_PATTERN.finditer(text):
        segments.append((False, text[position : match.start()]))
        if match.lastgroup in _COMMENT_GROUPS:
            segments.append((False, " ") if strip_comments else (True, match.group(0)))
        else:
            segments.append((True, match.group(0)))
        position = match.end()
    segments.append((False, text[position:]))

    pieces: list[str] = []
    code = ""
    for is_literal, segment in segments:
        if is_literal:
            pieces.append(_WHITESPACE.sub(" ", code))
            pieces.append(segment)
            code = ""
        else:
            code += segment
    pieces.append(_WHITESPACE.sub(" ", code))

    return "".join(pieces).strip()


# Short type names and the canonical names PostgreSQL reports for them
TYPE_ALIASES = {
    "int": "integer",
    "int2": "smallint",
    "int4": "integer",
    "int8": "bigint",
    "float4": "real",
    "float8": "double precision",
    "float": "double precision",
    "bool": "boolean",
    "varchar": "character varying",
    "char": "character",
    "bpchar": "character",
    "decimal": "numeric",
    "timestamp": "timestamp without time zone",
    "timestamptz": "timestamp with time zone",
    "time": "time without time zone",
    "timetz": "time with time zone",
    "varbit": "bit varying",
}
_TYPE_NAME = re.compile(
    r"^(?P<base>[^(\[]+?)\s*(?P<modifiers>(?:\([^)]*\)|\[\d*\])*)$"
)


def normalize_type_name(data_type: str) -> str:
    """Canonical spelling of a type name, keeping its modifiers.

    >>> normalize_type_name("INT4")
    'integer'
    >>> normalize_type_name("varchar (20)")
    'character varying(20)'
    """
    collapsed = _WHITESPACE.sub(" ", data_type.strip().lower())
    match = _TYPE_NAME.match(collapsed)
    if match is None:
        return collapsed
    base = TYPE_ALIASES.get(match["base"], match["base"])
    modifiers = (match["modifiers"] or "").replace(" ", "")
    return base + modifiers
