"""Integration tests for CLI."""

import json
import os
import subprocess
import sys
from pathlib import Path

import pytest


def run_tradesync(args: list[str], data_dir: Path) -> subprocess.CompletedProcess:
    """Run tradesync CLI command against a data directory, in local mode."""
    env = {
        k: v for k, v in os.environ.items() if not k.startswith("TRADESYNC_")
    }
    env["TRADESYNC_DATA_DIR"] = str(data_dir)
    return subprocess.run(
        [sys.executable, "-m", "tradesync.cli"] + args,
        capture_output=True,
        text=True,
        env=env,
    )


@pytest.fixture
def data_dir(temp_dir):
    return temp_dir / "data"


def add_order(data_dir: Path, *extra: str) -> int:
    result = run_tradesync(["orders", "add", "--product", "Apples", *extra], data_dir)
    assert result.returncode == 0, result.stderr
    listing = run_tradesync(["orders", "list", "--json"], data_dir)
    return json.loads(listing.stdout)[-1]["id"]


class TestCLIIntegration:
    """Integration tests for CLI commands."""

    def test_no_command_prints_help(self, data_dir):
        result = run_tradesync([], data_dir)
        assert result.returncode == 0
        assert "usage" in result.stdout.lower()

    def test_status_local_mode(self, data_dir):
        result = run_tradesync(["status"], data_dir)

        assert result.returncode == 0
        assert "local only" in result.stdout
        assert "Next order number: 482" in result.stdout

    def test_status_json(self, data_dir):
        result = run_tradesync(["status", "--json"], data_dir)

        data = json.loads(result.stdout)
        assert data["configured"] is False
        assert data["outbox_pending"] == 0

    def test_add_order(self, data_dir):
        result = run_tradesync(
            ["orders", "add", "--product", "X", "--price", "10", "--discount", "10"],
            data_dir,
        )

        assert result.returncode == 0
        assert "Added order #482" in result.stdout
        assert (data_dir / "orders.json").exists()

    def test_order_numbers_persist_across_runs(self, data_dir):
        add_order(data_dir)
        result = run_tradesync(["orders", "add", "--product", "Pears"], data_dir)
        assert "#483" in result.stdout

    def test_list_orders_json_includes_final_price(self, data_dir):
        add_order(data_dir, "--price", "10", "--discount", "10")

        result = run_tradesync(["orders", "list", "--json"], data_dir)

        data = json.loads(result.stdout)
        assert len(data) == 1
        assert data[0]["final_price"] == pytest.approx(9.0)
        assert data[0]["status"] == "pending"

    def test_list_orders_empty(self, data_dir):
        result = run_tradesync(["orders", "list"], data_dir)
        assert "No orders." in result.stdout

    def test_update_order_status(self, data_dir):
        order_id = add_order(data_dir)

        result = run_tradesync(
            ["orders", "update", str(order_id), "--status", "completed"], data_dir
        )

        assert result.returncode == 0
        assert "[completed]" in result.stdout

    def test_status_cannot_move_backwards(self, data_dir):
        order_id = add_order(data_dir)
        run_tradesync(["orders", "update", str(order_id), "--status", "invoiced"], data_dir)

        result = run_tradesync(
            ["orders", "update", str(order_id), "--status", "pending"], data_dir
        )

        assert result.returncode == 1
        assert "Cannot change order status" in result.stderr

    def test_update_missing_order(self, data_dir):
        result = run_tradesync(["orders", "update", "1", "--price", "2"], data_dir)
        assert result.returncode == 1
        assert "not found" in result.stderr

    def test_delete_order(self, data_dir):
        order_id = add_order(data_dir)

        result = run_tradesync(["orders", "delete", str(order_id)], data_dir)

        assert result.returncode == 0
        assert "locally" in result.stdout
        listing = run_tradesync(["orders", "list", "--json"], data_dir)
        assert json.loads(listing.stdout) == []

    def test_invalid_order_rejected(self, data_dir):
        result = run_tradesync(
            ["orders", "add", "--product", "X", "--discount", "150"], data_dir
        )
        assert result.returncode == 1
        assert "Invalid order" in result.stderr

    def test_clients(self, data_dir):
        result = run_tradesync(
            ["clients", "add", "--name", "Acme", "--tax-id", "IT1", "--buyer"], data_dir
        )
        assert result.returncode == 0
        assert "Added client" in result.stdout

        run_tradesync(["clients", "add", "--name", "Seller Co", "--seller"], data_dir)
        buyers = run_tradesync(["clients", "list", "--role", "buyer", "--json"], data_dir)
        assert [c["name"] for c in json.loads(buyers.stdout)] == ["Acme"]

        listing = run_tradesync(["clients", "list"], data_dir)
        assert "Acme (buyer)" in listing.stdout

    def test_vendors(self, data_dir):
        result = run_tradesync(["vendors", "add", "--name", "Farm", "--city", "Bari"], data_dir)
        assert result.returncode == 0

        listing = run_tradesync(["vendors", "list"], data_dir)
        assert "Farm - Bari" in listing.stdout

    def test_notifications_empty(self, data_dir):
        result = run_tradesync(["notifications", "list"], data_dir)
        assert result.returncode == 0
        assert "0 notification(s), 0 unread" in result.stdout

    def test_notifications_bad_filter(self, data_dir):
        result = run_tradesync(["notifications", "list", "--filter", "spam"], data_dir)
        assert result.returncode == 1

    def test_notifications_help_lists_filters(self, data_dir):
        result = run_tradesync(["notifications", "list", "--help"], data_dir)
        assert "all, unread, read" in result.stdout

    def test_notifications_read_all(self, data_dir):
        result = run_tradesync(["notifications", "read", "--all"], data_dir)
        assert result.returncode == 0
        assert "Marked 0" in result.stdout

    def test_outbox_empty_after_local_mutation(self, data_dir):
        add_order(data_dir)

        result = run_tradesync(["outbox", "list"], data_dir)

        assert result.returncode == 0
        assert "Outbox is empty." in result.stdout

    def test_outbox_retry_with_nothing_to_do(self, data_dir):
        result = run_tradesync(["outbox", "retry"], data_dir)
        assert result.returncode == 0
        assert "Requeued 0" in result.stdout

    def test_corrupted_state_reports_error(self, data_dir):
        data_dir.mkdir(parents=True)
        (data_dir / "orders.json").write_text("{broken")

        result = run_tradesync(["orders", "list"], data_dir)

        assert result.returncode == 1
        assert "Error:" in result.stderr

    def test_version(self, data_dir):
        result = run_tradesync(["--version"], data_dir)
        assert result.returncode == 0
        assert "0.1.0" in result.stdout
