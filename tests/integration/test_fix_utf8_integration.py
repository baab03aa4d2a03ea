import os
import shutil
import tempfile
from unittest.mock import patch, MagicMock

import pandas as pd
import pytest

from substitutor.substitution_types import OwningProcessRunningError
from fixer import fix_utf8

TRANSLATIONS = (
    b'E28093 "-"    En dash\n'
    b'E28094 "--"   Em dash\n'
    b"E2809C '\"'   left double quote\n"
    b'E280A6 "..."  horizontal ellipsis\n'
    b'C2A0  " "   non-breaking space\n'
)
MAILBOX = b"From: a\r\nHello\xE2\x80\x94world\xC2\xA0\xE2\x80\x9Cquoted\xE2\x80\xA6\r\n"
PATCHED = b"From: a\r\nHello--\x00world \x00\"\x00\x00quoted...\r\n"


@pytest.fixture
def mail_dir():
    tmpdir = tempfile.mkdtemp()
    with open(os.path.join(tmpdir, "translations.txt"), "wb") as f:
        f.write(TRANSLATIONS)
    with open(os.path.join(tmpdir, "In.mbx"), "wb") as f:
        f.write(MAILBOX)
    with open(os.path.join(tmpdir, "In.toc"), "wb") as f:
        f.write(b"toc-contents")
    os.utime(os.path.join(tmpdir, "In.toc"), (1_000_000, 1_000_000))
    yield tmpdir
    shutil.rmtree(tmpdir)


def _argv(mail_dir, *extra):
    return [
        os.path.join(mail_dir, "In"),
        "--translations", os.path.join(mail_dir, "translations.txt"),
        *extra,
    ]


def _read(path):
    with open(path, "rb") as f:
        return f.read()


def _no_owner():
    return patch("hostenv.process_check.psutil.process_iter", return_value=[])


def test_main_patches_mailbox_and_touches_toc(mail_dir, capsys):
    with _no_owner():
        assert fix_utf8.main(_argv(mail_dir, "--block-size", "8")) == 0

    assert _read(os.path.join(mail_dir, "In.mbx")) == PATCHED
    toc = os.path.join(mail_dir, "In.toc")
    assert _read(toc) == b"toc-contents"
    assert os.stat(toc).st_mtime > 1_000_000

    out = capsys.readouterr().out
    assert "4 changes were made" in out
    assert "processed and stored 5 translations" in out


def test_main_zero_matches_is_success(mail_dir):
    with open(os.path.join(mail_dir, "In.mbx"), "wb") as f:
        f.write(b"nothing to see here")
    with _no_owner():
        assert fix_utf8.main(_argv(mail_dir)) == 0
    assert _read(os.path.join(mail_dir, "In.mbx")) == b"nothing to see here"


def test_main_owner_running_exits_fatal(mail_dir, capsys):
    proc = MagicMock()
    proc.info = {"name": "Eudora.exe"}
    with patch("hostenv.process_check.psutil.process_iter", return_value=[proc]):
        with pytest.raises(SystemExit) as exc:
            fix_utf8.main(_argv(mail_dir))
    assert exc.value.code == fix_utf8.FATAL_EXIT_STATUS
    assert _read(os.path.join(mail_dir, "In.mbx")) == MAILBOX
    assert "Eudora is running" in capsys.readouterr().out


def test_main_missing_mailbox_exits_fatal(mail_dir):
    os.remove(os.path.join(mail_dir, "In.mbx"))
    with pytest.raises(SystemExit) as exc:
        fix_utf8.main(_argv(mail_dir, "--skip-process-check"))
    assert exc.value.code == 8


def test_main_bad_translation_exits_before_mutation(mail_dir):
    with open(os.path.join(mail_dir, "translations.txt"), "ab") as f:
        f.write(b'C2A0 "abc" too long\n')
    with pytest.raises(SystemExit) as exc:
        fix_utf8.main(_argv(mail_dir, "--skip-process-check"))
    assert exc.value.code == 8
    assert _read(os.path.join(mail_dir, "In.mbx")) == MAILBOX


def test_main_missing_toc_exits_fatal_after_patch(mail_dir):
    """The mailbox is already patched when the TOC touch fails; there is no rollback."""
    os.remove(os.path.join(mail_dir, "In.toc"))
    with pytest.raises(SystemExit) as exc:
        fix_utf8.main(_argv(mail_dir, "--skip-process-check"))
    assert exc.value.code == 8
    assert _read(os.path.join(mail_dir, "In.mbx")) == PATCHED


def test_main_block_size_too_small(mail_dir):
    with pytest.raises(SystemExit) as exc:
        fix_utf8.main(_argv(mail_dir, "--skip-process-check", "--block-size", "3"))
    assert exc.value.code == 8


def test_dry_run_backup_and_report(mail_dir):
    report_csv = os.path.join(mail_dir, "usage.csv")
    with _no_owner():
        fix_utf8.main(_argv(mail_dir, "--dry-run", "--backup", "--report-csv", report_csv))
    assert _read(os.path.join(mail_dir, "In.mbx")) == MAILBOX
    assert not os.path.exists(os.path.join(mail_dir, "In.mbx.bak"))
    assert os.stat(os.path.join(mail_dir, "In.toc")).st_mtime == 1_000_000

    df = pd.read_csv(report_csv, dtype={"pattern_hex": str})
    assert list(df["pattern_hex"]) == ["E28093", "E28094", "E2809C", "E280A6", "C2A0"]
    assert list(df["times_used"]) == [0, 1, 1, 1, 1]


def test_backup_keeps_original(mail_dir):
    with _no_owner():
        fix_utf8.main(_argv(mail_dir, "--backup", "--no-touch"))
    assert _read(os.path.join(mail_dir, "In.mbx.bak")) == MAILBOX
    assert _read(os.path.join(mail_dir, "In.mbx")) == PATCHED
    assert os.stat(os.path.join(mail_dir, "In.toc")).st_mtime == 1_000_000


def test_run_fix_with_injected_collaborators(mail_dir):
    owner_check = MagicMock()
    touch = MagicMock(return_value=0.0)
    report = fix_utf8.run_fix(
        os.path.join(mail_dir, "In"),
        translations=os.path.join(mail_dir, "translations.txt"),
        owner_check=owner_check,
        touch=touch,
    )
    owner_check.assert_called_once_with("Eudora.exe", debug=False)
    touch.assert_called_once_with(os.path.join(mail_dir, "In.toc"), debug=False)
    assert report.total_substitutions == 4
    assert report.per_rule_usage == [0, 1, 1, 1, 1]


def test_run_fix_owner_running_propagates(mail_dir):
    def owner_check(name, debug=False):
        raise OwningProcessRunningError(f"{name} is running")
    with pytest.raises(OwningProcessRunningError):
        fix_utf8.run_fix(
            os.path.join(mail_dir, "In"),
            translations=os.path.join(mail_dir, "translations.txt"),
            owner_check=owner_check,
        )
