# src/squeel/core/dependency.py
"""Lexical table-dependency extraction for invalidation.

This is a heuristic, NOT a SQL parser. It finds identifiers that follow
FROM / JOIN / UPDATE / INTO (DELETE FROM is covered by FROM), removes
names introduced as common table expressions, and lower-cases the rest.

When no table is found the result is "unknown" (None), which callers
treat as the wildcard. Over-reporting only costs extra re-reads.

Known over-approximations:
    - INSERT ... SELECT reports the source tables as well as the target
    - ``IS DISTINCT FROM col`` reports ``col`` as a table
"""

import re

from squeel.contracts.types import TableDependencies

# Single pass so that comment markers inside literals (and quotes inside
# comments) are handled in the order they appear.
_NOISE = re.compile(
    r"""
      '(?:[^']|'')*'        # string literal ('' is an escaped quote)
    | --[^\n]*              # line comment
    | /\*.*?(?:\*/|\Z)      # block comment (unterminated runs to the end)
    """,
    re.DOTALL | re.VERBOSE,
)

_IDENT = r'(?:"[^"]+"|`[^`]+`|\[[^\]]+\]|\w+)'
# Optional schema qualifier: main.orders -> orders
_TABLE_REF = rf"({_IDENT})(?:\s*\.\s*({_IDENT}))?"

_TABLE_KEYWORD = re.compile(
    rf"\b(FROM|JOIN|INTO|UPDATE(?:\s+OR\s+\w+)?)\s+{_TABLE_REF}",
    re.IGNORECASE,
)

# Words that can follow a table reference but are not an alias
_CLAUSE_WORDS = (
    r"(?:WHERE|GROUP|ORDER|LIMIT|HAVING|WINDOW|UNION|EXCEPT|INTERSECT|JOIN|INNER|LEFT|RIGHT|FULL|CROSS|NATURAL|ON|USING|SET|VALUES|RETURNING)"
)
# ", other_table" continuing a comma-separated FROM list
_FROM_LIST_CONTINUATION = re.compile(
    rf"\s*(?:AS\s+)?(?:(?!{_CLAUSE_WORDS}\b)\w+\s*)?,\s*{_TABLE_REF}",
    re.IGNORECASE,
)

_CTE_HEAD = re.compile(rf"\bWITH\s+(?:RECURSIVE\s+)?({_IDENT})", re.IGNORECASE)
_CTE_CONTINUATION = re.compile(rf",\s*({_IDENT})\s*(?:\([^)]*\)\s*)?AS\s*(?:NOT\s+)?(?:MATERIALIZED\s*)?\(", re.IGNORECASE)

_SQL_KEYWORDS = frozenset({"select", "values", "with", "set", "lateral"})


def _unquote(identifier: str) -> str:
    if identifier[0] in "\"`[":
        return identifier[1:-1]
    return identifier


def _canonical(first: str, second: str | None) -> str:
    return _unquote(second if second is not None else first).lower()


def strip_noise(sql: str) -> str:
    """Remove comments and blank out string-literal bodies.

    Literals are replaced with ``''`` so that keywords inside quoted
    strings cannot be read as table references.
    """

    def _replace(match: re.Match[str]) -> str:
        return "''" if match.group(0).startswith("'") else " "

    return _NOISE.sub(_replace, sql)


def extract_cte_names(sql: str) -> frozenset[str]:
    """Names introduced by WITH clauses (already noise-stripped SQL)."""
    names = {_unquote(m.group(1)).lower() for m in _CTE_HEAD.finditer(sql)}
    if names:
        names.update(_unquote(m.group(1)).lower() for m in _CTE_CONTINUATION.finditer(sql))
    return frozenset(names)


def extract_tables(sql: str) -> frozenset[str] | None:
    """Extract lower-cased table names referenced by ``sql``.

    Args:
        sql: Any SQL text, possibly several statements

    Returns:
        The referenced base tables, excluding CTE names, or None when no
        table reference was found (dependencies unknown)

    Example:
        >>> sorted(extract_tables("SELECT * FROM orders o JOIN customers c ON o.cid = c.id"))
        ['customers', 'orders']
        >>> extract_tables("PRAGMA foreign_keys") is None
        True
    """
    clean = strip_noise(sql)
    ctes = extract_cte_names(clean)

    tables: set[str] = set()
    for match in _TABLE_KEYWORD.finditer(clean):
        tables.add(_canonical(match.group(2), match.group(3)))
        if match.group(1).upper() != "FROM":
            continue
        position = match.end()
        while (continuation := _FROM_LIST_CONTINUATION.match(clean, position)) is not None:
            tables.add(_canonical(continuation.group(1), continuation.group(2)))
            position = continuation.end()

    tables -= ctes
    tables -= _SQL_KEYWORDS
    return frozenset(tables) if tables else None


def resolve_dependencies(sql: str) -> TableDependencies:
    """Like extract_tables, but with "unknown" mapped to the wildcard."""
    tables = extract_tables(sql)
    if tables is None:
        return TableDependencies.any()
    return TableDependencies(tables=tables)
