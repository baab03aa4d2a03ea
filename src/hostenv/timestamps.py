import os
import time

from substitutor.substitution_types import TimestampError


def sibling_path(base: str, ext: str) -> str:
    """'In' + '.toc' -> 'In.toc'; accepts the extension with or without its dot."""
    if ext and not ext.startswith("."):
        ext = "." + ext
    return f"{base}{ext}"


def touch_timestamp(path: str, debug: bool = False) -> float:
    """
    Set the access and modification times of an existing file to now without
    changing its contents. Returns the new modification time.
    """
    if not os.path.isfile(path):
        raise TimestampError(f"can't update timestamp of {path}: no such file")
    now = time.time()
    try:
        os.utime(path, (now, now))
    except OSError as e:
        raise TimestampError(f"can't update timestamp of {path}: {e}") from e
    if debug:
        print(f"[Timestamp][DEBUG] {path} mtime set to {now:.3f}", flush=True)
    return os.stat(path).st_mtime
