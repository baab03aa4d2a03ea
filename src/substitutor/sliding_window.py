"""
sliding_window.py: two resident block windows over a file opened read-write.

The logical span is [0, 2B): positions < B live in the first window, positions
>= B in the second. Only slide_if_needed() moves file offsets. A window is
written back only if one of its bytes was changed, and only its valid length
is written, so a short final read never extends the file.
"""

import time
from typing import BinaryIO, Callable, Optional

import numpy as np

from substitutor.substitution_types import (
    BLOCK_SIZE,
    MAX_PATTERN_LEN,
    OutOfRangeError,
    PatchIOError,
)


def _info(msg: str):
    print(msg, flush=True)


class SlidingWindowBuffer:
    def __init__(
        self,
        fh: BinaryIO,
        block_size: int = BLOCK_SIZE,
        *,
        write_back: bool = True,
        on_slide: Optional[Callable[[int], None]] = None,
        debug: bool = False,
        profile: bool = False,
    ):
        """
        :param fh: binary file object supporting seek/read/write (opened "r+b")
        :param block_size: window size B; must be >= MAX_PATTERN_LEN
        :param write_back: when False, dirty windows are never written (dry run)
        :param on_slide: called with the number of bytes that left the windows on each slide
        """
        if block_size < MAX_PATTERN_LEN:
            raise ValueError(f"block_size must be >= {MAX_PATTERN_LEN}, got {block_size}")
        self.fh = fh
        self.block_size = block_size
        self.write_back = write_back
        self.on_slide = on_slide
        self.debug = debug
        self.profile = profile

        self._first = np.zeros(block_size, dtype=np.uint8)
        self._second = np.zeros(block_size, dtype=np.uint8)
        self.first_len = 0
        self.second_len = 0
        self.first_offset = 0
        self.second_offset = 0
        self.next_offset = 0
        self.first_dirty = False
        self.second_dirty = False

        self.cursor = 0
        self.windows_flushed = 0
        self.bytes_read = 0
        self.io_seconds = 0.0
        self._primed = False

    # ------------------------------------------------------------------
    # File I/O
    # ------------------------------------------------------------------

    def _read_into(self, window: np.ndarray, offset: int) -> int:
        t0 = time.perf_counter() if self.profile else 0.0
        try:
            self.fh.seek(offset)
            data = self.fh.read(self.block_size)
        except OSError as e:
            raise PatchIOError(f"read of {self.block_size} bytes at file position {offset} failed: {e}") from e
        n = len(data)
        if n:
            window[:n] = np.frombuffer(data, dtype=np.uint8)
        self.bytes_read += n
        if self.profile:
            self.io_seconds += time.perf_counter() - t0
        return n

    def _flush_first(self):
        if not self.first_dirty:
            return
        if self.write_back:
            if self.debug:
                _info(f"[Window][DEBUG] writing first {self.first_len} bytes of buffer "
                      f"to file position {self.first_offset}")
            t0 = time.perf_counter() if self.profile else 0.0
            try:
                self.fh.seek(self.first_offset)
                self.fh.write(self._first[:self.first_len].tobytes())
            except OSError as e:
                raise PatchIOError(
                    f"write of {self.first_len} bytes at file position {self.first_offset} failed: {e}") from e
            if self.profile:
                self.io_seconds += time.perf_counter() - t0
            self.windows_flushed += 1
        self.first_dirty = False

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def prime(self):
        """Fill both windows from the start of the file."""
        if self._primed:
            raise RuntimeError("SlidingWindowBuffer.prime() called twice")
        self._primed = True
        self.first_offset = 0
        self.first_len = self._read_into(self._first, self.first_offset)
        self.second_offset = self.first_offset + self.first_len
        self.second_len = self._read_into(self._second, self.second_offset)
        self.next_offset = self.second_offset + self.second_len
        self.first_dirty = self.second_dirty = False
        self.cursor = 0
        if self.debug:
            _info(f"[Window][DEBUG] buffer primed with {self.valid_length} bytes, "
                  f"first at {self.first_offset}, second at {self.second_offset}")

    def slide_if_needed(self, force: bool = False) -> bool:
        """
        Keep the cursor in the first window. When the cursor has reached B (or
        force is set), flush the first window if dirty, rotate, and read the
        next block into the second window.
        """
        if not force and self.cursor < self.block_size:
            return False

        departing = self.first_len
        self._flush_first()

        # swap roles, then refill the (old first) array as the new second window
        self._first, self._second = self._second, self._first
        self.first_offset = self.second_offset
        self.first_len = self.second_len
        self.first_dirty = self.second_dirty

        self.second_offset = self.next_offset
        self.second_len = self._read_into(self._second, self.second_offset)
        self.next_offset = self.second_offset + self.second_len
        self.second_dirty = False

        self.cursor = max(self.cursor - self.block_size, 0)
        if self.debug:
            _info(f"[Window][DEBUG] buffer starts at file pos {self.first_offset}, "
                  f"read {self.second_len} bytes at file pos {self.second_offset}, "
                  f"next file pos {self.next_offset}")
        if self.on_slide is not None and departing:
            self.on_slide(departing)
        return True

    def drain(self):
        """Force slides until both windows are empty so every dirty window is on disk."""
        while self.valid_length > 0:
            self.slide_if_needed(force=True)

    # ------------------------------------------------------------------
    # Access
    # ------------------------------------------------------------------

    @property
    def valid_length(self) -> int:
        return self.first_len + self.second_len

    def advance(self, n: int = 1):
        self.cursor += n

    def _check_range(self, pos: int, length: int):
        if pos < 0 or length < 0 or pos + length > self.valid_length:
            raise OutOfRangeError(
                f"range [{pos}, {pos + length}) outside valid data [0, {self.valid_length})")

    def byte_at(self, pos: int) -> int:
        self._check_range(pos, 1)
        if pos < self.block_size:
            return int(self._first[pos])
        return int(self._second[pos - self.block_size])

    def span_at(self, pos: int, length: int) -> bytes:
        """Up to `length` bytes from `pos`, clipped to the valid data."""
        B = self.block_size
        end = min(pos + length, self.valid_length)
        if pos < 0 or pos >= end:
            return b""
        if end <= B:
            return self._first[pos:end].tobytes()
        if pos >= B:
            return self._second[pos - B:end - B].tobytes()
        return self._first[pos:B].tobytes() + self._second[:end - B].tobytes()

    def write_at(self, pos: int, data: bytes):
        """Overwrite bytes in place, flagging each window that is actually touched."""
        n = len(data)
        if n == 0:
            return
        self._check_range(pos, n)
        B = self.block_size
        arr = np.frombuffer(bytes(data), dtype=np.uint8)
        split = min(max(B - pos, 0), n)   # bytes that land in the first window
        if split > 0:
            self._first[pos:pos + split] = arr[:split]
            self.first_dirty = True
        if split < n:
            start = pos + split - B
            self._second[start:start + n - split] = arr[split:]
            self.second_dirty = True

    def zero_from(self, pos: int, count: int):
        self.write_at(pos, b"\x00" * count)

    def next_candidate(self, pos: int, lead_bytes: np.ndarray) -> int:
        """
        Smallest position >= pos whose byte could start a pattern, or
        valid_length if there is none in the resident windows.
        """
        B = self.block_size
        if pos < B:
            hits = np.flatnonzero(lead_bytes[self._first[pos:self.first_len]])
            if hits.size:
                return pos + int(hits[0])
            pos = B
        hits = np.flatnonzero(lead_bytes[self._second[pos - B:self.second_len]])
        if hits.size:
            return pos + int(hits[0])
        return self.valid_length

    def __repr__(self):
        return (f"<SlidingWindowBuffer B={self.block_size} cursor={self.cursor} "
                f"first=[{self.first_offset}+{self.first_len}{'*' if self.first_dirty else ''}] "
                f"second=[{self.second_offset}+{self.second_len}{'*' if self.second_dirty else ''}]>")
