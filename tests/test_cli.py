# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""CLI tests with click's CliRunner against a temporary database."""

import json
import os

import pytest
from click.testing import CliRunner

from mail_scheduler.cli import format_ts, main


@pytest.fixture(autouse=True)
def clean_env(monkeypatch, tmp_path):
    for key in list(os.environ):
        if key.startswith("MSD_"):
            monkeypatch.delenv(key)
    monkeypatch.chdir(tmp_path)


@pytest.fixture
def db_file(tmp_path):
    return str(tmp_path / "cli.db")


@pytest.fixture
def cli(db_file):
    runner = CliRunner()

    def invoke(*args, input=None):
        return runner.invoke(main, ["--log-level", "ERROR", *args, "--db", db_file], input=input)

    return invoke


def _json(result):
    assert result.exit_code == 0, result.output
    return json.loads(result.output)


@pytest.fixture
def user(cli):
    return _json(cli("users", "sync", "owner@example.com", "--name", "Owner", "--json"))


@pytest.fixture
def sender(cli, user):
    return _json(cli("senders", "add", user["id"], "news@example.com", "--name", "News", "--json"))


@pytest.fixture
def recipients_csv(tmp_path):
    path = tmp_path / "list.csv"
    path.write_text("email,subject\na@example.com,First\nb@example.com,\n,ignored\n", encoding="utf-8")
    return str(path)


def test_format_ts():
    assert format_ts(None) == "-"
    assert format_ts(1_700_000_000) == "2023-11-14T22:13:20+00:00"


class TestUsers:
    def test_sync_and_show(self, cli, user):
        assert user["name"] == "Owner"
        result = cli("users", "show", "owner@example.com")
        assert result.exit_code == 0
        assert user["id"] in result.output

    def test_show_unknown_exits_with_error(self, cli):
        result = cli("users", "show", "ghost@example.com")
        assert result.exit_code == 1
        assert "User not found" in result.output

    def test_sync_invalid_email(self, cli):
        result = cli("users", "sync", "not-an-address")
        assert result.exit_code == 1
        assert "Invalid request data" in result.output


class TestSenders:
    def test_add_and_list(self, cli, user, sender):
        assert sender["hourly_limit"] == 50
        listed = _json(cli("senders", "list", user["id"], "--json"))
        assert [s["id"] for s in listed] == [sender["id"]]

        table = cli("senders", "list", user["id"])
        assert table.exit_code == 0
        assert "Senders" in table.output

    def test_update(self, cli, sender):
        updated = _json(cli("senders", "update", sender["id"], "--hourly-limit", "20", "--inactive", "--json"))
        assert updated["hourly_limit"] == 20
        assert updated["is_active"] is False

    def test_update_without_fields(self, cli, sender):
        result = cli("senders", "update", sender["id"])
        assert result.exit_code == 1
        assert "Nothing to update" in result.output

    def test_delete_asks_for_confirmation(self, cli, sender):
        declined = cli("senders", "delete", sender["id"], input="n\n")
        assert "Cancelled" in declined.output
        assert _json(cli("senders", "show", sender["id"], "--json"))["id"] == sender["id"]

        forced = cli("senders", "delete", sender["id"], "--force")
        assert forced.exit_code == 0
        assert cli("senders", "show", sender["id"]).exit_code == 1


class TestSchedulingAndJobs:
    def test_schedule_from_csv(self, cli, sender, recipients_csv):
        result = cli(
            "schedule", sender["id"], recipients_csv,
            "--start", "2030-01-01T09:00:00Z", "--delay", "10", "--subject", "Default",
        )
        assert result.exit_code == 0, result.output
        assert "Scheduled 2 emails" in result.output

        jobs = _json(cli("jobs", "list", sender["id"], "--json"))
        assert [j["recipient"] for j in jobs] == ["a@example.com", "b@example.com"]
        assert [j["subject"] for j in jobs] == ["First", "Default"]
        assert jobs[1]["scheduled_at"] - jobs[0]["scheduled_at"] == 10

    def test_schedule_rejects_bad_delay(self, cli, sender, recipients_csv):
        result = cli("schedule", sender["id"], recipients_csv, "--delay", "0")
        assert result.exit_code == 1

    def test_cancel_show_and_stats(self, cli, sender, recipients_csv):
        data = _json(cli("schedule", sender["id"], recipients_csv, "--start", "2030-01-01T09:00:00Z", "--json"))
        assert data["count"] == 2
        job_id = data["jobs"][0]["id"]

        cancelled = cli("jobs", "cancel", job_id)
        assert cancelled.exit_code == 0
        assert f"Job {job_id} cancelled" in cancelled.output

        job = _json(cli("jobs", "show", job_id, "--json"))
        assert job["status"] == "FAILED"
        assert job["sender"]["email"] == "news@example.com"

        failed = _json(cli("jobs", "list", sender["id"], "--status", "failed", "--json"))
        assert [j["id"] for j in failed] == [job_id]

        stats = _json(cli("stats", sender["id"], "--json"))
        assert stats["status_counts"] == {"FAILED": 1, "SCHEDULED": 1}

        table = cli("stats", sender["id"])
        assert table.exit_code == 0
        assert "SCHEDULED" in table.output

    def test_cancel_unknown_job(self, cli):
        result = cli("jobs", "cancel", "missing")
        assert result.exit_code == 1
        assert "Email job not found" in result.output
