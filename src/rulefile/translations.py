"""
translations.py: parse a translations file into a RuleSet.

Each non-blank line holds a hex string to search for (1 to 4 bytes), blanks
(spaces or tabs), and a replacement delimited by " or ' that may not contain its delimiter.
Anything after the closing delimiter is a comment:

    E28093 "-"    En dash
    E2809C '"'    left double quote
    C2A0  " "   non-breaking space
    EFBBBF	''	byte order mark, tab separated

The file is read as bytes and decoded as latin-1, so every replacement
character is exactly one raw byte.
"""

import os
from typing import Iterable, List, Tuple

from substitutor.substitution_types import (
    FileOpenError,
    InvalidRuleError,
    MAX_PATTERN_LEN,
    MAX_REPLACEMENT_LEN,
    RuleSet,
)

TRANSLATION_FILE = "translations.txt"
DELIMITERS = ('"', "'")
_BLANKS = " \t"
_HEX_DIGITS = "0123456789abcdefABCDEF"


def _info(msg: str):
    print(msg, flush=True)


def parse_translation_line(line: str, lineno: int = 0):
    """
    Parse one line. Returns (pattern, replacement, comment) or None for a blank line.
    Raises InvalidRuleError with the line number on any grammar violation.
    """
    def fail(why: str):
        raise InvalidRuleError(f"line {lineno}: {why}: {line.rstrip()!r}")

    text = line.rstrip("\r\n")
    i = 0
    n = len(text)
    while i < n and text[i] in _BLANKS:
        i += 1
    if i == n:
        return None

    start = i
    while i < n and text[i] not in _BLANKS:
        if text[i] not in _HEX_DIGITS:
            fail("bad hex")
        i += 1
    hex_str = text[start:i]
    if len(hex_str) > 2 * MAX_PATTERN_LEN:
        fail("hex string too long")
    if len(hex_str) % 2:
        fail("odd number of hex chars")
    pattern = bytes.fromhex(hex_str)

    while i < n and text[i] in _BLANKS:
        i += 1
    if i == n or text[i] not in DELIMITERS:
        fail("missing string delimiter")
    delim = text[i]
    end = text.find(delim, i + 1)
    if end < 0:
        fail("unterminated replacement string")
    replacement = text[i + 1:end]
    if len(replacement) > MAX_REPLACEMENT_LEN:
        fail("replacement string too long")
    if len(replacement) > len(pattern):
        fail("replacement longer than search string")

    comment = text[end + 1:].strip()
    return pattern, replacement.encode("latin-1"), comment


def parse_translation_lines(lines: Iterable[str], debug: bool = False) -> List[Tuple[bytes, bytes, str]]:
    entries = []
    for lineno, line in enumerate(lines, start=1):
        if debug:
            _info(f"[RuleFile][DEBUG] {line.rstrip()}")
        entry = parse_translation_line(line, lineno)
        if entry is not None:
            entries.append(entry)
    return entries


def load_translation_file(path: str = TRANSLATION_FILE, debug: bool = False) -> RuleSet:
    """Read and validate a translations file; returns the loaded RuleSet."""
    if not os.path.isfile(path):
        raise FileOpenError(f"can't open translations file {path}")
    try:
        with open(path, "rb") as f:
            raw = f.read()
    except OSError as e:
        raise FileOpenError(f"can't read translations file {path}: {e}") from e

    # split on LF only; str.splitlines() would also break on latin-1 bytes such as 0x85
    lines = [chunk.decode("latin-1") for chunk in raw.split(b"\n")]
    entries = parse_translation_lines(lines, debug=debug)
    rules = RuleSet().load(entries)
    _info(f"[RuleFile] processed and stored {len(rules)} translations from {path}")
    return rules
