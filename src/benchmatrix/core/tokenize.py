"""
Argument Tokenization

Splits configured argument strings (``vm.args``, ``vm.<name>.args``,
device artifact lists, protocol lines) into tokens.
"""

from typing import List


def tokenize_args(value: str) -> List[str]:
    """
    Split a string into tokens on runs of whitespace.

    A backslash immediately preceding a whitespace character turns it into
    a literal space inside the current token. A backslash before any other
    character is dropped and the character kept, so ``spa\\ces`` reads as
    ``spaces``. A trailing lone backslash is kept verbatim.

    Args:
        value: Raw argument string

    Returns:
        Ordered list of tokens, never containing empty strings
    """
    tokens: List[str] = []
    current: List[str] = []
    in_token = False
    i = 0
    length = len(value)

    while i < length:
        char = value[i]
        if char == "\\" and i + 1 < length:
            following = value[i + 1]
            current.append(" " if following.isspace() else following)
            in_token = True
            i += 2
            continue
        if char.isspace():
            if in_token:
                tokens.append("".join(current))
                current = []
                in_token = False
        else:
            current.append(char)
            in_token = True
        i += 1

    if in_token:
        tokens.append("".join(current))
    return tokens


def escape_arg(token: str) -> str:
    """Escape whitespace and backslashes so ``tokenize_args`` yields ``token`` back."""
    escaped = []
    for char in token:
        if char == "\\":
            escaped.append("\\\\")
        elif char.isspace():
            escaped.append("\\ ")
        else:
            escaped.append(char)
    return "".join(escaped)
