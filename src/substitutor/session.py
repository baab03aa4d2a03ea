import os
import time
from typing import Optional

from tqdm import tqdm

from substitutor.substitution_types import (
    BLOCK_SIZE,
    FileOpenError,
    PatchIOError,
    RuleSet,
    SubstitutionReport,
)
from substitutor.sliding_window import SlidingWindowBuffer
from substitutor.engine import SubstitutionEngine


def _info(msg: str):
    print(msg, flush=True)


def _open_read_write(path: str):
    if not os.path.exists(path):
        raise FileOpenError(f"can't open file {path}: no such file")
    if os.path.isdir(path):
        raise FileOpenError(f"can't open file {path}: is a directory")
    try:
        return open(path, "r+b")
    except OSError as e:
        raise FileOpenError(f"can't open file {path} for read-write: {e}") from e


class FileSession:
    """
    One pass over one file: prime the windows, scan to the end, drain, close.
    There is no rollback: windows flushed before a failure stay written.
    """
    def __init__(
        self,
        block_size: int = BLOCK_SIZE,
        *,
        dry_run: bool = False,
        progress: bool = False,
        debug: bool = False,
        profile: bool = False,
    ):
        self.block_size = block_size
        self.dry_run = dry_run
        self.progress = progress
        self.debug = debug
        self.profile = profile

    def run(self, path: str, rules: RuleSet) -> SubstitutionReport:
        def profmsg(msg, t1, t0):
            if self.profile:
                _info(f"[Profile][Session] {msg}: {(t1 - t0) * 1000:.2f} ms")

        t_start = time.perf_counter()
        with _open_read_write(path) as f:
            file_size = os.fstat(f.fileno()).st_size
            if self.debug:
                _info(f"[Session][DEBUG] opened {path} ({file_size} bytes, block size {self.block_size}"
                      f"{', dry run' if self.dry_run else ''})")

            bar: Optional[tqdm] = None
            try:
                if self.progress:
                    bar = tqdm(total=file_size, unit="B", unit_scale=True, desc=os.path.basename(path))
                buffer = SlidingWindowBuffer(
                    f,
                    self.block_size,
                    write_back=not self.dry_run,
                    on_slide=bar.update if bar is not None else None,
                    debug=self.debug,
                    profile=self.profile,
                )
                engine = SubstitutionEngine(debug=self.debug, profile=self.profile)

                t0 = time.perf_counter()
                buffer.prime()
                total = engine.run(buffer, rules)
                t1 = time.perf_counter()
                profmsg("prime + scan", t1, t0)

                buffer.drain()
                try:
                    f.flush()
                except OSError as e:
                    raise PatchIOError(f"flush of {path} failed: {e}") from e
                t2 = time.perf_counter()
                profmsg("drain", t2, t1)
                if self.profile:
                    _info(f"[Profile][Session] file I/O inside windows: {buffer.io_seconds * 1000:.2f} ms")
            finally:
                if bar is not None:
                    bar.close()

        if self.debug:
            _info(f"[Session][DEBUG] {total} substitutions, {buffer.windows_flushed} windows written, "
                  f"{buffer.bytes_read} bytes read")
        profmsg("total session", time.perf_counter(), t_start)

        return SubstitutionReport(
            total_substitutions=total,
            rules=list(rules),
            path=path,
            file_size=file_size,
            bytes_scanned=buffer.bytes_read,
            windows_flushed=buffer.windows_flushed,
            dry_run=self.dry_run,
        )


def run_file_session(path: str, rules: RuleSet, block_size: int = BLOCK_SIZE, **kwargs) -> SubstitutionReport:
    """Convenience wrapper: FileSession(block_size, **kwargs).run(path, rules)."""
    return FileSession(block_size, **kwargs).run(path, rules)
