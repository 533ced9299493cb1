"""Tests for the Typer CLI."""

from unittest.mock import patch

import pytest
from typer.testing import CliRunner

from pokerpot.cli import app
from pokerpot.clients.notifier import LoggingNotifier
from pokerpot.config import Settings
from pokerpot.db import Database
from pokerpot.events import EventQueue
from pokerpot.service import LedgerService

runner = CliRunner()


@pytest.fixture
def cli_env(tmp_path, monkeypatch):
    """Point the CLI at a temporary database and a fixed user."""
    db_path = tmp_path / "cli.db"
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("POKERPOT_DATABASE_PATH", str(db_path))
    monkeypatch.setenv("POKERPOT_USER_ID", "user-alice")
    monkeypatch.setenv("POKERPOT_USER_NAME", "Alice")
    monkeypatch.delenv("POKERPOT_REMOTE_URL", raising=False)
    monkeypatch.delenv("POKERPOT_NOTIFICATION_WEBHOOK_URL", raising=False)
    return db_path


class TestSettleCommand:
    """Test ad-hoc settle-up."""

    def test_prints_payments(self):
        result = runner.invoke(app, ["settle", "Ann=30", "Bob=-30"])

        assert result.exit_code == 0
        assert "Bob" in result.output
        assert "$30.00" in result.output

    def test_bad_entry(self):
        result = runner.invoke(app, ["settle", "Ann"])

        assert result.exit_code == 1
        assert "NAME=AMOUNT" in result.output

    def test_warns_when_unbalanced(self):
        result = runner.invoke(app, ["settle", "Ann=30", "Bob=-20"])

        assert result.exit_code == 0
        assert "do not net to zero" in result.output


class TestSessionCommands:
    """Test commands that touch the ledger."""

    def test_create_session(self, cli_env):
        result = runner.invoke(app, ["session", "create", "Friday", "--date", "2024-03-01"])

        assert result.exit_code == 0
        assert "Join code" in result.output
        db = Database(cli_env)
        try:
            sessions = db.list_sessions("user-alice")
            assert [s.name for s in sessions] == ["Friday"]
        finally:
            db.close()

    def test_bad_date(self, cli_env):
        result = runner.invoke(app, ["session", "create", "Friday", "--date", "March"])

        assert result.exit_code == 1
        assert "YYYY-MM-DD" in result.output

    def test_unknown_session(self, cli_env):
        result = runner.invoke(app, ["session", "show", "missing"])

        assert result.exit_code == 1
        assert "not found" in result.output

    def test_sync_without_remote(self, cli_env):
        result = runner.invoke(app, ["sync"])

        assert result.exit_code == 1
        assert "POKERPOT_REMOTE_URL" in result.output


class TestSettings:
    """Test settings loading."""

    def test_env_prefix(self, cli_env):
        settings = Settings()

        assert settings.database_path == cli_env
        assert settings.user_id == "user-alice"
        assert settings.sync_enabled is False


class TestPotCommands:
    """Test the pot split calculator commands."""

    def test_split_reports_odd_cents(self):
        result = runner.invoke(app, ["pot", "split", "10", "Ann", "Bob", "Cat"])

        assert result.exit_code == 0
        assert "$3.33" in result.output
        assert "$0.01" in result.output

    def test_split_rejects_empty_pot(self):
        result = runner.invoke(app, ["pot", "split", "0", "Ann", "Bob"])

        assert result.exit_code == 1
        assert "must be positive" in result.output

    def test_side_pots(self):
        result = runner.invoke(app, ["pot", "side", "Ann=100", "Bob=300", "Cat=300"])

        assert result.exit_code == 0
        assert "Main Pot" in result.output
        assert "Side Pot 1" in result.output
        assert "$400.00" in result.output

    def test_side_bad_entry(self):
        result = runner.invoke(app, ["pot", "side", "Ann"])

        assert result.exit_code == 1
        assert "NAME=AMOUNT" in result.output


class TestNotifications:
    """Test that committed changes notify."""

    def test_partial_bulk_approval_still_notifies(self, cli_env):
        """Approvals that succeeded notify even though the command failed."""
        runner.invoke(app, ["session", "create", "Friday", "--date", "2024-03-01"])
        db = Database(cli_env)
        try:
            session = db.list_sessions("user-alice")[0]
            alice = db.get_member_for_user(session.id, "user-alice")
            buy_in = LedgerService(db, EventQueue()).approvals.request_buy_in(
                session.id, alice.id, 2000, "user-alice"
            )
        finally:
            db.close()

        with patch.object(LoggingNotifier, "notify_buy_in_approved") as mock_notify:
            result = runner.invoke(app, ["buyin", "approve", buy_in.id, "missing"])

        assert result.exit_code == 1
        assert "missing" in result.output
        mock_notify.assert_called_once_with(session.id, "user-alice", 2000)
