"""
Split raw SQL text into individually executable statements

A single left-to-right scan tracks whether the cursor is inside a string,
a quoted identifier, a dollar-quoted body or a block comment, so semicolons
in those places never end a statement.
"""

import re
from enum import Enum
from typing import Iterator, List, Optional

DOLLAR_TAG = re.compile(r"\$(?:[A-Za-z_][A-Za-z0-9_]*)?\$")


class State(Enum):
    NORMAL = "normal"
    SINGLE_QUOTE = "single_quote"
    DOUBLE_QUOTE = "double_quote"
    DOLLAR_QUOTE = "dollar_quote"
    BACKTICK = "backtick"
    BLOCK_COMMENT = "block_comment"


def _is_ident_char(ch: str) -> bool:
    return ch.isalnum() or ch in "_$"


def _starts_escape_string(sql: str, quote_pos: int) -> bool:
    """True for the quote of a PostgreSQL E'...' literal"""
    if quote_pos < 1 or sql[quote_pos - 1] not in "eE":
        return False
    return quote_pos < 2 or not _is_ident_char(sql[quote_pos - 2])


def split_statements(sql: str, backslash_escapes: bool = False,
                     hash_comments: Optional[bool] = None) -> Iterator[str]:
    """Yield trimmed statements in source order

    `backslash_escapes` enables MySQL string escaping; `hash_comments`
    (MySQL `#` line comments) follows it unless given explicitly. Line
    comments are dropped, block comments are kept verbatim. A statement made
    only of comments and whitespace is not yielded, except MySQL `/*! */`
    directives.
    """
    if hash_comments is None:
        hash_comments = backslash_escapes

    buf: List[str] = []
    has_content = False
    state = State.NORMAL
    escapes = False
    tag = ""
    i = 0
    n = len(sql)

    while i < n:
        ch = sql[i]

        if state is State.NORMAL:
            if ch == ";":
                statement = "".join(buf).strip()
                if statement and has_content:
                    yield statement
                buf = []
                has_content = False
                i += 1
                continue

            if (ch == "-" and sql.startswith("--", i)) or (ch == "#" and hash_comments):
                # Skip to the end of the line; the newline itself is kept
                end = sql.find("\n", i)
                i = n if end == -1 else end
                continue

            if ch == "/" and sql.startswith("/*", i):
                state = State.BLOCK_COMMENT
                if sql.startswith("/*!", i):
                    has_content = True
                buf.append("/*")
                i += 2
                continue

            if ch == "$" and not (i > 0 and _is_ident_char(sql[i - 1])):
                match = DOLLAR_TAG.match(sql, i)
                if match:
                    tag = match.group(0)
                    state = State.DOLLAR_QUOTE
                    has_content = True
                    buf.append(tag)
                    i = match.end()
                    continue

            if ch == "'":
                state = State.SINGLE_QUOTE
                escapes = backslash_escapes or _starts_escape_string(sql, i)
            elif ch == '"':
                state = State.DOUBLE_QUOTE
            elif ch == "`":
                state = State.BACKTICK

            if not ch.isspace():
                has_content = True
            buf.append(ch)
            i += 1

        elif state is State.SINGLE_QUOTE:
            buf.append(ch)
            if ch == "\\" and escapes and i + 1 < n:
                buf.append(sql[i + 1])
                i += 2
                continue
            if ch == "'":
                if sql.startswith("''", i):
                    buf.append("'")
                    i += 2
                    continue
                state = State.NORMAL
            i += 1

        elif state is State.DOUBLE_QUOTE:
            buf.append(ch)
            if ch == '"':
                state = State.NORMAL
            i += 1

        elif state is State.BACKTICK:
            buf.append(ch)
            if ch == "`":
                state = State.NORMAL
            i += 1

        elif state is State.DOLLAR_QUOTE:
            # The closing tag is consumed whole, nothing inside is interpreted
            end = sql.find(tag, i)
            if end == -1:
                buf.append(sql[i:])
                i = n
            else:
                buf.append(sql[i:end + len(tag)])
                i = end + len(tag)
                state = State.NORMAL

        else:
            end = sql.find("*/", i)
            if end == -1:
                buf.append(sql[i:])
                i = n
            else:
                buf.append(sql[i:end + 2])
                i = end + 2
                state = State.NORMAL

    statement = "".join(buf).strip()
    if statement and has_content:
        yield statement
