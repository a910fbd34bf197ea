"""
Read-only SQL guardrail for the admin SQL runner.

validate_query() decides, without touching the database, whether text submitted
by the admin is safe to run as a single read-only statement. The rules run in a
fixed order and the first one that fails produces the verdict:

1. Emptiness
2. Statement kind (must start with SELECT or WITH)
3. Blocked keywords anywhere in the text, comments and literals included
4. Exactly one statement (one trailing semicolon at most)
5. Row cap (LIMIT appended when the query has none at top level)

Rules 4 and 5 rely on scan_sql(), a small character-level lexer that knows
PostgreSQL quoting: '...' literals, E'...' escape strings, "..." identifiers,
U&"..." Unicode-escape text, $tag$...$tag$ bodies, -- line comments and nested
/* */ block comments.
"""
import re
from typing import NamedTuple, Optional, Union

from pydantic import BaseModel, ConfigDict


# ============================================================================
# Constants
# ============================================================================

# Row cap appended to queries that carry no LIMIT of their own
MAX_ROWS = 500

BLOCKED_KEYWORDS = (
    "DROP", "ALTER", "TRUNCATE", "DELETE", "UPDATE", "INSERT", "CREATE",
    "GRANT", "REVOKE", "EXEC", "EXECUTE", "PG_READ_FILE", "PG_WRITE_FILE",
    "LO_IMPORT", "LO_EXPORT", "COPY",
)

# Side-effecting functions and clauses that READ ONLY transactions do not stop
# (SELECT INTO is blocked by the engine too, but rejecting it here is clearer)
HARDENING_KEYWORDS = (
    "INTO", "SET_CONFIG", "SETVAL", "DBLINK", "DBLINK_EXEC",
    "PG_READ_BINARY_FILE", "PG_LS_DIR", "PG_STAT_FILE",
    "LO_UNLINK", "LO_PUT", "LO_FROM_BYTEA",
    "PG_TERMINATE_BACKEND", "PG_CANCEL_BACKEND", "PG_RELOAD_CONF",
    # Custom escape characters for U&"..." text are not decoded
    "UESCAPE",
)

# Multi-word keywords, matched as adjacent tokens
BLOCKED_PHRASES = (
    ("SET", "ROLE"),
    ("SET", "SESSION"),
)

_BLOCKED_WORDS = frozenset(BLOCKED_KEYWORDS) | frozenset(HARDENING_KEYWORDS)

EMPTY_QUERY = "Empty query"
STATEMENT_KIND_NOT_ALLOWED = "Only SELECT or WITH queries allowed"
MULTIPLE_STATEMENTS = "Multiple statements not allowed"
UNTERMINATED_TEXT = "Unterminated quoted text or comment"

_STATEMENT_HEAD = re.compile(r"(?:SELECT|WITH)(?![\w$])")
_WORD_TOKEN = re.compile(r"\w+")
_CODE_WORD = re.compile(r"[^\W\d][\w$]*")
_NUMBER = re.compile(r"\d[\w.]*")
_DOLLAR_TAG = re.compile(r"\$(?:[^\W\d]\w*)?\$")
# \XXXX, \+XXXXXX or \\ inside U&"..." and U&'...'
_UNICODE_ESCAPE = re.compile(r"\\(?:\\|\+([0-9A-Fa-f]{6})|([0-9A-Fa-f]{4}))")


# ============================================================================
# Verdicts
# ============================================================================

class Accepted(BaseModel):
    """Query passed every rule. `query` is the normalized text to execute."""
    model_config = ConfigDict(frozen=True)
    query: str


class Rejected(BaseModel):
    """Query failed a rule. `reason` is safe to show to the admin verbatim."""
    model_config = ConfigDict(frozen=True)
    reason: str


ValidationVerdict = Union[Accepted, Rejected]


# ============================================================================
# Lexer
# ============================================================================

class SqlScan(NamedTuple):
    # (upper-cased word, parenthesis depth) for words outside quotes and comments
    code_words: list[tuple[str, int]]
    # offsets of semicolons outside quoted text; comments are NOT excluded
    semicolons: list[int]
    ends_in_line_comment: bool
    unterminated: bool
    # (start, end) of the bodies of U&"..." and U&'...' text
    unicode_escapes: list[tuple[int, int]]


def _find_quote_end(sql: str, start: int, quote: str, backslash_escapes: bool) -> int:
    """
    Return the offset just past the closing quote, or -1 if the text ends first.
    A doubled quote is an escaped quote in every mode.
    """
    i = start
    n = len(sql)
    while i < n:
        ch = sql[i]
        if backslash_escapes and ch == "\\":
            i += 2
            continue
        if ch == quote:
            if i + 1 < n and sql[i + 1] == quote:
                i += 2
                continue
            return i + 1
        i += 1
    return -1


def scan_sql(sql: str, backslash_escapes: bool = False) -> SqlScan:
    """
    Walk the text once, tracking quoting state character by character.

    Args:
        sql: Query text
        backslash_escapes: Treat backslash as an escape inside plain '...'
            literals (standard_conforming_strings = off). E'...' strings
            always use backslash escapes.
    """
    code_words: list[tuple[str, int]] = []
    semicolons: list[int] = []
    unicode_escapes: list[tuple[int, int]] = []
    depth = 0
    i = 0
    n = len(sql)

    def note_semicolons(start: int, end: int) -> None:
        semicolons.extend(j for j in range(start, end) if sql[j] == ";")

    while i < n:
        ch = sql[i]

        if sql.startswith("--", i):
            end = sql.find("\n", i)
            if end == -1:
                note_semicolons(i, n)
                return SqlScan(code_words, semicolons, True, False, unicode_escapes)
            note_semicolons(i, end)
            i = end + 1
            continue

        if sql.startswith("/*", i):
            # PostgreSQL block comments nest
            j = i + 2
            level = 1
            while j < n and level:
                if sql.startswith("/*", j):
                    level += 1
                    j += 2
                elif sql.startswith("*/", j):
                    level -= 1
                    j += 2
                else:
                    j += 1
            note_semicolons(i, min(j, n))
            if level:
                return SqlScan(code_words, semicolons, False, True, unicode_escapes)
            i = j
            continue

        if ch == "'" or ch == '"':
            escapes = backslash_escapes if ch == "'" else False
            end = _find_quote_end(sql, i + 1, ch, escapes)
            if end == -1:
                return SqlScan(code_words, semicolons, False, True, unicode_escapes)
            i = end
            continue

        if ch == "$":
            match = _DOLLAR_TAG.match(sql, i)
            if match:
                tag = match.group()
                end = sql.find(tag, match.end())
                if end == -1:
                    return SqlScan(code_words, semicolons, False, True, unicode_escapes)
                i = end + len(tag)
                continue
            i += 1
            continue

        match = _CODE_WORD.match(sql, i)
        if match:
            word = match.group()
            i = match.end()
            if word in ("E", "e") and i < n and sql[i] == "'":
                end = _find_quote_end(sql, i + 1, "'", True)
                if end == -1:
                    return SqlScan(code_words, semicolons, False, True, unicode_escapes)
                i = end
                continue
            if word in ("U", "u") and sql.startswith(("&'", '&"'), i):
                # U& text never takes backslash escapes of its own
                end = _find_quote_end(sql, i + 2, sql[i + 1], False)
                if end == -1:
                    return SqlScan(code_words, semicolons, False, True, unicode_escapes)
                unicode_escapes.append((i + 2, end - 1))
                i = end
                continue
            code_words.append((word.upper(), depth))
            continue

        match = _NUMBER.match(sql, i)
        if match:
            i = match.end()
            continue

        if ch == "(":
            depth += 1
        elif ch == ")":
            depth = max(depth - 1, 0)
        elif ch == ";":
            semicolons.append(i)
        i += 1

    return SqlScan(code_words, semicolons, False, False, unicode_escapes)


def ends_in_line_comment(sql: str) -> bool:
    """True if anything appended to `sql` on the same line would be commented out."""
    return scan_sql(sql).ends_in_line_comment


# ============================================================================
# Rules
# ============================================================================

def _match_phrase(tokens: list[str], index: int) -> Optional[str]:
    for phrase in BLOCKED_PHRASES:
        if tuple(tokens[index:index + len(phrase)]) == phrase:
            return " ".join(phrase)
    return None


def _unescape(match: re.Match) -> str:
    code = match.group(1) or match.group(2)
    if code is None:
        return "\\"
    try:
        return chr(int(code, 16))
    except ValueError:
        # Past U+10FFFF; the server rejects it
        return match.group()


def decode_unicode_escapes(sql: str, spans: list[tuple[int, int]]) -> str:
    """Return `sql` with the escapes inside each U&"..." / U&'...' body decoded."""
    parts = []
    last = 0
    for start, end in spans:
        parts.append(sql[last:start])
        parts.append(_UNICODE_ESCAPE.sub(_unescape, sql[start:end]))
        last = end
    parts.append(sql[last:])
    return "".join(parts)


def _first_blocked_word(sql: str) -> Optional[str]:
    tokens = [token.upper() for token in _WORD_TOKEN.findall(sql)]
    for index, token in enumerate(tokens):
        phrase = _match_phrase(tokens, index)
        if phrase:
            return phrase
        if token in _BLOCKED_WORDS:
            return token
    return None


def find_blocked_keyword(sql: str) -> Optional[str]:
    """
    Return the first blocked keyword in text order, or None.

    Every whole word in the text counts, including words inside comments and
    string literals. Names spelled with U&"..." escapes are checked again after
    decoding, so U&"pg_read_fil\\0065" is caught. Multi-word keywords are also
    looked for in the code-only word stream so a comment between SET and ROLE
    does not hide them.
    """
    keyword = _first_blocked_word(sql)
    if keyword:
        return keyword

    # Either reading of plain literals may be the one the server uses
    standard = scan_sql(sql)
    for scan in (standard, scan_sql(sql, backslash_escapes=True)):
        if scan.unicode_escapes:
            keyword = _first_blocked_word(decode_unicode_escapes(sql, scan.unicode_escapes))
            if keyword:
                return keyword

    code_tokens = [word for word, _ in standard.code_words]
    for index in range(len(code_tokens)):
        phrase = _match_phrase(code_tokens, index)
        if phrase:
            return phrase
    return None


def find_statement_break(sql: str) -> Optional[str]:
    """
    Return a rejection reason if `sql` is not exactly one statement.

    The scan runs twice, with and without backslash escapes in plain literals,
    so a server running with standard_conforming_strings off cannot see a
    statement separator that the standard reading hides inside a literal.
    """
    last = len(sql) - 1
    standard = scan_sql(sql)
    escaped = scan_sql(sql, backslash_escapes=True)
    for scan in (standard, escaped):
        if any(pos != last for pos in scan.semicolons):
            return MULTIPLE_STATEMENTS

    # An unterminated literal in the escaped reading only swallows text, so
    # only the standard reading decides this
    if standard.unterminated:
        return UNTERMINATED_TEXT
    return None


def has_top_level_limit(sql: str) -> bool:
    """True if LIMIT or FETCH appears as a keyword outside parentheses, quotes and comments."""
    return any(word in ("LIMIT", "FETCH") and depth == 0 for word, depth in scan_sql(sql).code_words)


def apply_row_cap(sql: str, max_rows: int = MAX_ROWS) -> str:
    """
    Append `LIMIT max_rows` unless the query already limits itself.
    Applying it to its own output returns the output unchanged.
    """
    if has_top_level_limit(sql):
        return sql

    body = sql.rstrip()
    if body.endswith(";"):
        body = body[:-1].rstrip()
    separator = "\n" if ends_in_line_comment(body) else " "
    return f"{body}{separator}LIMIT {max_rows}"


def validate_query(query: str) -> ValidationVerdict:
    """
    Check admin-submitted SQL and return Accepted(normalized) or Rejected(reason).

    Never raises for string input.
    """
    trimmed = query.strip()
    if not trimmed:
        return Rejected(reason=EMPTY_QUERY)

    if not _STATEMENT_HEAD.match(trimmed.upper()):
        return Rejected(reason=STATEMENT_KIND_NOT_ALLOWED)

    keyword = find_blocked_keyword(trimmed)
    if keyword:
        return Rejected(reason=f"Blocked keyword: {keyword}")

    problem = find_statement_break(trimmed)
    if problem:
        return Rejected(reason=problem)

    return Accepted(query=apply_row_cap(trimmed))
