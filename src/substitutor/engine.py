import time

from substitutor.substitution_types import MAX_PATTERN_LEN, RuleSet
from substitutor.sliding_window import SlidingWindowBuffer


def _info(msg: str):
    print(msg, flush=True)


class SubstitutionEngine:
    """
    Drives the scan: at each cursor position try every rule in load order,
    apply the first match, and consume the whole matched span (replacement
    plus zero padding) so padded bytes are never rescanned.
    """
    def __init__(self, debug: bool = False, profile: bool = False):
        self.debug = debug
        self.profile = profile
        self.total_substitutions = 0
        self.positions_tested = 0

    def run(self, buffer: SlidingWindowBuffer, rules: RuleSet) -> int:
        t0 = time.perf_counter() if self.profile else 0.0
        lead = rules.lead_bytes

        while True:
            # the cursor may sit up to 2B after a match or a skip; slide until it is back in the first window
            while buffer.slide_if_needed():
                pass
            if buffer.cursor >= buffer.valid_length:
                break

            pos = buffer.cursor
            self.positions_tested += 1
            rule = rules.match_at(buffer.span_at(pos, MAX_PATTERN_LEN))
            if rule is None:
                buffer.cursor = buffer.next_candidate(pos + 1, lead)
                continue

            buffer.write_at(pos, rule.replacement)
            if rule.pad_length:
                buffer.zero_from(pos + len(rule.replacement), rule.pad_length)
            buffer.advance(len(rule.pattern))
            rules.record_use(rule)
            self.total_substitutions += 1
            if self.debug:
                _info(f"[Engine][DEBUG] {rule.pattern.hex().upper()} -> {rule.replacement!r} "
                      f"at file pos {buffer.first_offset + pos}")

        if self.profile:
            _info(f"[Profile][Engine] scan: {(time.perf_counter() - t0) * 1000:.2f} ms "
                  f"({self.positions_tested} positions tested)")
        return self.total_substitutions
