#!/usr/bin/env python3
"""
fix_utf8.py: repair UTF-8 characters in Eudora mailboxes

Changes the non-ASCII UTF-8 sequences stored in a Eudora mailbox into related
ASCII text that Eudora renders correctly, in place, using the translations
listed in translations.txt. Replacements shorter than their search string are
zero padded, which Eudora ignores when rendering.

After patching <base>.mbx, the timestamp of <base>.toc is set to now (its
contents are untouched) so Eudora does not rebuild the table of contents.

Usage:
    python fix_utf8.py In
    python fix_utf8.py In --translations translations.txt --backup --progress

The mailbox is changed in place, so keep a backup!
"""

import argparse
import shutil
import sys
import time
from typing import Callable, Optional

from substitutor.substitution_types import BLOCK_SIZE, MAX_PATTERN_LEN, SubstitutionError, SubstitutionReport
from substitutor.session import FileSession
from rulefile.translations import TRANSLATION_FILE, load_translation_file
from hostenv.process_check import OWNER_IMAGE_NAME, ensure_owner_not_running
from hostenv.timestamps import sibling_path, touch_timestamp

VERSION = "0.2"
FATAL_EXIT_STATUS = 8

MAILBOX_EXT = ".mbx"
TOC_EXT = ".toc"


def _info(msg: str):
    print(msg, flush=True)


def _ms(s: float) -> str:
    return f"{s * 1000:.3f} ms"


def run_fix(
    base: str,
    *,
    translations: str = TRANSLATION_FILE,
    mailbox_ext: str = MAILBOX_EXT,
    toc_ext: str = TOC_EXT,
    process_name: str = OWNER_IMAGE_NAME,
    block_size: int = BLOCK_SIZE,
    check_process: bool = True,
    touch_toc: bool = True,
    backup: bool = False,
    dry_run: bool = False,
    report_csv: Optional[str] = None,
    progress: bool = False,
    debug: bool = False,
    profile: bool = False,
    owner_check: Callable[..., None] = ensure_owner_not_running,
    touch: Callable[..., float] = touch_timestamp,
) -> SubstitutionReport:
    """
    Full pipeline: owner check -> load translations -> patch mailbox -> touch TOC.
    Raises SubstitutionError/OSError on any fatal condition; nothing is caught here.
    """
    if check_process:
        owner_check(process_name, debug=debug)
    elif debug:
        _info("[fix_utf8][DEBUG] process check skipped")

    rules = load_translation_file(translations, debug=debug)

    mailbox = sibling_path(base, mailbox_ext)
    if backup and not dry_run:
        backup_path = mailbox + ".bak"
        _info(f"[fix_utf8] backing up {mailbox} to {backup_path}")
        shutil.copy2(mailbox, backup_path)

    _info(f"[fix_utf8] opening mailbox file {mailbox}")
    session = FileSession(block_size, dry_run=dry_run, progress=progress, debug=debug, profile=profile)
    report = session.run(mailbox, rules)

    for line in report.summary_lines():
        _info(line)

    if report_csv:
        report.to_frame().to_csv(report_csv, index=False)
        _info(f"[fix_utf8] usage report written to {report_csv}")

    if touch_toc and not dry_run:
        toc = sibling_path(base, toc_ext)
        _info(f"[fix_utf8] updating timestamp of {toc}")
        touch(toc, debug=debug)

    return report


def parse_args(argv=None):
    p = argparse.ArgumentParser(
        description="Change UTF-8 characters to close ASCII equivalents (padded with zeroes) in Eudora mailboxes. "
                    "The mailbox <base>.mbx is changed in place, so keep a backup!")
    p.add_argument("base", help="Base filename of both the mailbox and table-of-contents files (e.g. 'In')")
    p.add_argument("--translations", type=str, default=TRANSLATION_FILE,
                   help=f"Translations file (default: ./{TRANSLATION_FILE})")
    p.add_argument("--mailbox-ext", type=str, default=MAILBOX_EXT, help=f"Mailbox extension (default: {MAILBOX_EXT})")
    p.add_argument("--toc-ext", type=str, default=TOC_EXT, help=f"Table-of-contents extension (default: {TOC_EXT})")
    p.add_argument("--process-name", type=str, default=OWNER_IMAGE_NAME,
                   help=f"Executable that must not be running (default: {OWNER_IMAGE_NAME})")
    p.add_argument("--skip-process-check", action="store_true", help="Do not check whether the mailbox owner is running")
    p.add_argument("--block-size", type=int, default=BLOCK_SIZE,
                   help=f"Window size in bytes (default: {BLOCK_SIZE}, minimum {MAX_PATTERN_LEN})")
    p.add_argument("--no-touch", action="store_true", help="Do not update the table-of-contents timestamp")
    p.add_argument("--backup", action="store_true", help="Copy the mailbox to <mailbox>.bak before patching")
    p.add_argument("--dry-run", action="store_true", help="Count substitutions without modifying any file")
    p.add_argument("--report-csv", type=str, default=None, help="Write per-translation usage counts to this CSV")
    p.add_argument("--progress", action="store_true", help="Show a progress bar while scanning")
    p.add_argument("--debug", action="store_true", help="Enable debug output")
    p.add_argument("--profile", action="store_true", help="Enable profiling (fine-grained timing)")
    p.add_argument("--version", action="version", version=f"%(prog)s {VERSION}")
    return p.parse_args(argv)


def main(argv=None) -> int:
    args = parse_args(argv)
    _info(f'"fix_UTF8"  version {VERSION}')

    if args.block_size < MAX_PATTERN_LEN:
        _info(f"[fix_utf8][ERROR] --block-size must be at least {MAX_PATTERN_LEN}")
        raise SystemExit(FATAL_EXIT_STATUS)

    t0 = time.perf_counter()
    try:
        run_fix(
            args.base,
            translations=args.translations,
            mailbox_ext=args.mailbox_ext,
            toc_ext=args.toc_ext,
            process_name=args.process_name,
            block_size=args.block_size,
            check_process=not args.skip_process_check,
            touch_toc=not args.no_touch,
            backup=args.backup,
            dry_run=args.dry_run,
            report_csv=args.report_csv,
            progress=args.progress,
            debug=args.debug,
            profile=args.profile,
        )
    except (SubstitutionError, OSError) as e:
        _info(f"[fix_utf8][ERROR] {e}")
        raise SystemExit(FATAL_EXIT_STATUS)

    if args.profile:
        _info(f"[Profile][fix_utf8] Total time taken: {_ms(time.perf_counter() - t0)}")
    return 0


#############################
#       ENTRY POINT         #
#############################

if __name__ == "__main__":
    sys.exit(main())
