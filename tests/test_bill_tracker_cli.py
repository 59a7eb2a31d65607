import json
import os
import sys

sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..', 'src')))

import pytest

from bill_tracker_cli import build_parser, main


@pytest.fixture
def workspace(tmp_path, monkeypatch):
    monkeypatch.delenv("SLACK_WEBHOOK_URL", raising=False)
    june = tmp_path / "Bills" / "June"
    june.mkdir(parents=True)
    (june / "invoice.pdf").write_bytes(b"%PDF")
    submitted = tmp_path / "GST" / "2025-26" / "JUNE 2025 BILLS SUBMITTED IN JULY 2025"
    submitted.mkdir(parents=True)
    (submitted / "invoice.pdf").write_bytes(b"%PDF")
    data = str(tmp_path / "data")
    return data, tmp_path


def _run(data, *argv):
    return main(["--data-dir", data, "--env-file", os.devnull, *argv])


def test_commands_need_init_first(workspace, capsys):
    data, _ = workspace
    assert _run(data, "sync") == 2
    assert "bill-tracker init" in capsys.readouterr().out


def test_init_sync_and_status(workspace, capsys):
    data, tmp_path = workspace
    assert _run(data, "init", str(tmp_path / "Bills"), "--gst", str(tmp_path / "GST"), "--select-all") == 0
    assert _run(data, "sync") == 0
    out = capsys.readouterr().out
    assert "Auto-updated 1 bill(s)" in out

    with open(os.path.join(data, "bill_tracking.json"), encoding="utf-8") as f:
        bills = json.load(f)["bills"]
    assert bills[str(tmp_path / "Bills" / "June" / "invoice.pdf")]["sent_month"] == "2025-07"

    assert _run(data, "status", "--status", "sent") == 0
    assert "invoice.pdf" in capsys.readouterr().out
    assert not os.path.exists(os.path.join(data, ".bill_tracker_lock.json"))


def test_mark_pending_then_undo(workspace, capsys):
    data, tmp_path = workspace
    bill = str(tmp_path / "Bills" / "June" / "invoice.pdf")
    _run(data, "init", str(tmp_path / "Bills"), "--gst", str(tmp_path / "GST"), "--select-all")
    _run(data, "sync")

    assert _run(data, "mark-pending", bill) == 0
    assert _run(data, "undo") == 0
    assert "Action undone: MarkPending" in capsys.readouterr().out
    assert _run(data, "redo") == 0


def test_bad_month_is_reported(workspace, capsys):
    data, tmp_path = workspace
    _run(data, "init", str(tmp_path / "Bills"), "--select-all")
    bill = str(tmp_path / "Bills" / "June" / "invoice.pdf")
    assert _run(data, "mark-sent", bill, "--month", "July") == 1
    assert "month must be YYYY-MM" in capsys.readouterr().out


def test_parser_knows_every_command():
    parser = build_parser()
    for command in ("scan", "sync", "watch", "undo", "redo", "orphans"):
        assert parser.parse_args([command]).command == command
