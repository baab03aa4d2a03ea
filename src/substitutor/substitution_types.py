from typing import List, Optional, Union, Any, Iterable, Iterator, Sequence

import numpy as np
import pandas as pd

BLOCK_SIZE = 4096           # bytes per window; two windows are resident at a time
MAX_PATTERN_LEN = 4         # longest byte sequence a rule may search for
MAX_REPLACEMENT_LEN = 4

ByteLike = Union[bytes, bytearray, memoryview, Sequence[int]]


# ----------------------------------------------------------------------
# Error kinds
# ----------------------------------------------------------------------

class SubstitutionError(Exception):
    """Base class for every fatal error raised while patching a file."""


class InvalidRuleError(SubstitutionError, ValueError):
    """A rule (or a rule-file line) is malformed or oversized."""


class FileOpenError(SubstitutionError, OSError):
    """The target file is missing or cannot be opened for read-write."""


class PatchIOError(SubstitutionError, OSError):
    """A read or write failed in the middle of a session."""


class OutOfRangeError(SubstitutionError, IndexError):
    """A cursor or write fell outside the valid data of the window pair."""


class TimestampError(SubstitutionError, OSError):
    """The sibling index file could not have its timestamp updated."""


class OwningProcessRunningError(SubstitutionError, RuntimeError):
    """The application that owns the file is still running."""


# ----------------------------------------------------------------------
# Rules
# ----------------------------------------------------------------------

def as_rule_bytes(value: ByteLike, what: str) -> bytes:
    """
    Normalise bytes/bytearray/memoryview/list-of-ints into immutable bytes.
    Raises InvalidRuleError for anything else (including ints outside 0..255).
    """
    if isinstance(value, (bytes, bytearray, memoryview)):
        return bytes(value)
    if isinstance(value, str):
        raise InvalidRuleError(f"{what} must be raw bytes, not str: {value!r}")
    try:
        return bytes(list(value))
    except (TypeError, ValueError) as e:
        raise InvalidRuleError(f"malformed {what} encoding: {value!r} ({e})") from e


class Rule:
    """
    One pattern -> replacement translation.
    The replacement is never longer than the pattern; the shortfall is zero padded on use.
    """
    def __init__(self, pattern: bytes, replacement: bytes, times_used: int = 0, comment: str = ""):
        self.pattern = pattern            # 1..MAX_PATTERN_LEN bytes
        self.replacement = replacement    # 0..len(pattern) bytes
        self.times_used = times_used      # bumped once per accepted substitution
        self.comment = comment            # trailing text from the rule file, display only

    @property
    def pad_length(self) -> int:
        return len(self.pattern) - len(self.replacement)

    def __repr__(self):
        return (f"<Rule {self.pattern.hex().upper()} -> {self.replacement!r} "
                f"used={self.times_used}>")

    def to_dict(self) -> dict:
        return {
            "pattern": list(self.pattern),
            "replacement": list(self.replacement),
            "times_used": self.times_used,
            "comment": self.comment,
        }

    def __eq__(self, other: Any) -> bool:
        if not isinstance(other, Rule):
            return False
        return self.to_dict() == other.to_dict()


class RuleSet:
    """
    Ordered rules. Load order is match priority: at a given position the
    earliest-loaded rule whose pattern matches wins.
    """
    def __init__(self):
        self.rules: List[Rule] = []
        # lead_bytes[b] is True when some pattern starts with byte b
        self.lead_bytes = np.zeros(256, dtype=bool)

    def load(self, pairs: Iterable[tuple]) -> 'RuleSet':
        """
        Validate and append (pattern, replacement[, comment]) entries.
        Raises InvalidRuleError on the first bad entry; nothing from that entry is kept.
        """
        for idx, entry in enumerate(pairs):
            if len(entry) == 2:
                pattern, replacement = entry
                comment = ""
            elif len(entry) == 3:
                pattern, replacement, comment = entry
            else:
                raise InvalidRuleError(f"rule {idx}: expected (pattern, replacement[, comment]), got {entry!r}")

            pattern = as_rule_bytes(pattern, "pattern")
            replacement = as_rule_bytes(replacement, "replacement")
            if not 1 <= len(pattern) <= MAX_PATTERN_LEN:
                raise InvalidRuleError(
                    f"rule {idx}: pattern must be 1..{MAX_PATTERN_LEN} bytes, got {len(pattern)}")
            if len(replacement) > MAX_REPLACEMENT_LEN:
                raise InvalidRuleError(
                    f"rule {idx}: replacement must be at most {MAX_REPLACEMENT_LEN} bytes, got {len(replacement)}")
            if len(replacement) > len(pattern):
                raise InvalidRuleError(
                    f"rule {idx}: replacement longer than search string "
                    f"({len(replacement)} > {len(pattern)})")

            self.rules.append(Rule(pattern, replacement, comment=comment or ""))
            self.lead_bytes[pattern[0]] = True
        return self

    def match_at(self, data: bytes) -> Optional[Rule]:
        for rule in self.rules:
            if data.startswith(rule.pattern):
                return rule
        return None

    def record_use(self, rule: Rule) -> None:
        rule.times_used += 1

    def __len__(self):
        return len(self.rules)

    def __iter__(self) -> Iterator[Rule]:
        return iter(self.rules)

    def __repr__(self):
        return f"<RuleSet n_rules={len(self.rules)}>"


# ----------------------------------------------------------------------
# Report
# ----------------------------------------------------------------------

class SubstitutionReport:
    """
    Result of one file session: totals plus each rule with its usage counter.
    """
    def __init__(
        self,
        total_substitutions: int,
        rules: List[Rule],
        *,
        path: Optional[str] = None,
        file_size: Optional[int] = None,
        bytes_scanned: int = 0,
        windows_flushed: int = 0,
        dry_run: bool = False,
    ):
        self.total_substitutions = total_substitutions
        self.rules = rules
        self.path = path
        self.file_size = file_size
        self.bytes_scanned = bytes_scanned
        self.windows_flushed = windows_flushed
        self.dry_run = dry_run

    @property
    def per_rule_usage(self) -> List[int]:
        return [r.times_used for r in self.rules]

    def summary_lines(self) -> List[str]:
        """Human-readable statistics, one line per rule."""
        lines = [f"{self.total_substitutions} changes were made"
                 + (" (dry run, file not modified)" if self.dry_run else "")]
        for rule in self.rules:
            pat = rule.pattern.hex().upper().ljust(2 * MAX_PATTERN_LEN)
            repl = ('"' + rule.replacement.decode("latin-1") + '"').ljust(MAX_REPLACEMENT_LEN + 2)
            plural = " " if rule.times_used == 1 else "s"
            lines.append(f"  {pat} changed to {repl} {rule.times_used} time{plural}")
        return lines

    def __str__(self):
        return "\n".join(self.summary_lines())

    def __repr__(self):
        return (f"<SubstitutionReport total={self.total_substitutions} "
                f"usage={self.per_rule_usage} path={self.path}>")

    def to_dict(self) -> dict:
        return {
            "path": self.path,
            "total_substitutions": self.total_substitutions,
            "per_rule_usage": self.per_rule_usage,
            "rules": [r.to_dict() for r in self.rules],
            "file_size": self.file_size,
            "bytes_scanned": self.bytes_scanned,
            "windows_flushed": self.windows_flushed,
            "dry_run": self.dry_run,
        }

    def to_frame(self) -> pd.DataFrame:
        rows = [{
            "pattern_hex": r.pattern.hex().upper(),
            "replacement": r.replacement.decode("latin-1"),
            "pad_length": r.pad_length,
            "times_used": r.times_used,
            "comment": r.comment,
        } for r in self.rules]
        return pd.DataFrame(rows, columns=["pattern_hex", "replacement", "pad_length", "times_used", "comment"])
