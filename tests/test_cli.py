import json

import pytest
import yaml
from click.testing import CliRunner
from solders.pubkey import Pubkey

from tukcron import instructions as ixs
from tukcron.cli import main


@pytest.fixture
def runner():
    return CliRunner()


@pytest.fixture
def home(tmp_path, monkeypatch, wallet):
    home = tmp_path / "tukcron_home"
    home.mkdir()
    monkeypatch.setenv("TUKCRON_HOME", str(home))
    (home / "config.yaml").write_text(yaml.safe_dump({
        "wallet": str(wallet),
        "cron_name": "hourly-ping",
        "queue_name": "cli-queue",
        "schedule": "0 0 * * * *",
        "retry": {"backoff_seconds": 0},
        "log_level": "WARNING",
    }))
    return home


@pytest.fixture
def bootstrapped(runner, home):
    result = runner.invoke(main, ["sim", "bootstrap"])
    assert result.exit_code == 0, result.output
    return home


def test_init_command_creates_files(runner, tmp_path, monkeypatch):
    home = tmp_path / "custom_home"
    monkeypatch.setenv("TUKCRON_HOME", str(home))

    result = runner.invoke(main, ["init"])
    assert result.exit_code == 0
    assert "Initialized tukcron config" in result.output

    assert (home / "config.yaml").exists()
    assert (home / ".env").exists()

    cfg = yaml.safe_load((home / "config.yaml").read_text())
    assert cfg["schedule"] == "0 * * * * *"
    assert cfg["state_path"] == str(home / "state.json")


def test_init_does_not_overwrite_without_force(runner, home):
    before = (home / "config.yaml").read_text()

    result = runner.invoke(main, ["init"])
    assert result.exit_code == 1
    assert "Config already exists" in result.output
    assert (home / "config.yaml").read_text() == before


def test_init_force_overwrites(runner, home):
    result = runner.invoke(main, ["init", "--force"])
    assert result.exit_code == 0

    cfg = yaml.safe_load((home / "config.yaml").read_text())
    assert cfg["cron_name"] == "llm-interaction"


def test_command_without_config(runner, tmp_path, monkeypatch):
    monkeypatch.setenv("TUKCRON_HOME", str(tmp_path / "empty"))
    result = runner.invoke(main, ["schedule"])
    assert result.exit_code == 1
    assert "Config not loaded" in result.output


def test_version(runner, home):
    result = runner.invoke(main, ["--version"])
    assert result.exit_code == 0
    assert "tukcron" in result.output


class TestSim:

    def test_bootstrap_is_idempotent(self, runner, bootstrapped):
        result = runner.invoke(main, ["sim", "bootstrap"])
        assert result.exit_code == 0
        assert "already exists" in result.output

        state = json.loads((bootstrapped / "state.json").read_text())
        assert len(state["broker"]["queues"]) == 1

    def test_airdrop(self, runner, home):
        target = Pubkey.new_unique()
        result = runner.invoke(main, ["sim", "airdrop", str(target), "--lamports", "500"])
        assert result.exit_code == 0

        state = json.loads((home / "state.json").read_text())
        assert state["ledger"]["accounts"][str(target)]["lamports"] == 500


class TestSchedule:

    def test_schedule_then_rerun(self, runner, bootstrapped):
        first = runner.invoke(main, ["schedule"])
        assert first.exit_code == 0, first.output
        assert "✓ Cron job 'hourly-ping'" in first.output
        assert "cron-transaction close --cron-name hourly-ping --id 0" in first.output
        assert "cron close --cron-name hourly-ping" in first.output

        state_after_first = (bootstrapped / "state.json").read_text()
        second = runner.invoke(main, ["schedule"])
        assert second.exit_code == 0, second.output
        assert (bootstrapped / "state.json").read_text() == state_after_first

    def test_dry_run_writes_nothing(self, runner, bootstrapped):
        before = (bootstrapped / "state.json").read_text()

        result = runner.invoke(main, ["schedule", "--dry-run"])
        assert result.exit_code == 0, result.output
        assert "DRY RUN" in result.output
        assert (bootstrapped / "state.json").read_text() == before

    def test_missing_queue_fails(self, runner, home):
        result = runner.invoke(main, ["schedule"])
        assert result.exit_code == 1
        assert "✗ Pipeline halted" in result.output

    def test_malformed_schedule_rejected_at_load(self, runner, home):
        cfg = yaml.safe_load((home / "config.yaml").read_text())
        cfg["schedule"] = "hourly"
        (home / "config.yaml").write_text(yaml.safe_dump(cfg))

        result = runner.invoke(main, ["schedule"])
        assert result.exit_code == 1
        assert "Config not loaded" in result.output
        assert not (home / "state.json").exists()

    def test_jobs_show(self, runner, bootstrapped):
        runner.invoke(main, ["schedule"])
        result = runner.invoke(main, ["jobs", "show"])
        assert result.exit_code == 0
        assert "Job: hourly-ping" in result.output
        assert "Schedule: 0 0 * * * *" in result.output

    def test_jobs_list(self, runner, bootstrapped):
        empty = runner.invoke(main, ["jobs", "list"])
        assert empty.exit_code == 0
        assert "No jobs registered" in empty.output

        runner.invoke(main, ["schedule"])
        result = runner.invoke(main, ["jobs", "list"])
        assert result.exit_code == 0
        assert "hourly-ping [0 0 * * * *]" in result.output

    def test_jobs_show_unknown(self, runner, bootstrapped):
        result = runner.invoke(main, ["jobs", "show", "nope"])
        assert result.exit_code == 1
        assert "Unknown job" in result.output

    def test_addresses(self, runner, bootstrapped):
        runner.invoke(main, ["schedule"])
        result = runner.invoke(main, ["addresses"])
        assert result.exit_code == 0
        assert "task_queue_authority:" in result.output
        assert "cron_job_transaction:" in result.output
        assert "cron_job_name_mapping:" in result.output
        assert "queue_authority:" in result.output


class TestQueueAndTasks:

    def test_queue_create(self, runner, bootstrapped):
        result = runner.invoke(main, ["queue", "create", "second", "--capacity", "3"])
        assert result.exit_code == 0
        assert "(id 1)" in result.output

    def test_task_queue(self, runner, bootstrapped):
        result = runner.invoke(main, ["task", "queue", "--id", "1", "--text", "one-off"])
        assert result.exit_code == 0, result.output
        assert "✓ Task 1 queued" in result.output

        state = json.loads((bootstrapped / "state.json").read_text())
        task = state["broker"]["tasks"][0]
        assert task["crank_reward"] == 1_000_002
        assert task["free_tasks"] == 1
        assert state["ledger"]["accounts"][task["address"]]["lamports"] == ixs.interaction_rent("one-off")

        again = runner.invoke(main, ["task", "queue", "--id", "1"])
        assert again.exit_code == 1
        assert "already queued" in again.output


class TestDelegation:

    def test_delegate_then_interact(self, runner, bootstrapped):
        result = runner.invoke(main, ["schedule", "--delegate"])
        assert result.exit_code == 0, result.output

        result = runner.invoke(main, ["delegate"])
        assert result.exit_code == 0
        assert "processed by ephemeral" in result.output

        result = runner.invoke(main, ["interact", "--text", "hello"])
        assert result.exit_code == 0, result.output
        assert "posted on ephemeral" in result.output

    def test_interact_on_primary(self, runner, bootstrapped):
        runner.invoke(main, ["schedule"])
        result = runner.invoke(main, ["interact"])
        assert result.exit_code == 0, result.output
        assert "posted on primary" in result.output

    def test_delegate_missing_interaction(self, runner, bootstrapped):
        result = runner.invoke(main, ["delegate"])
        assert result.exit_code == 1
        assert "does not exist" in result.output
