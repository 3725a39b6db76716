"""Tests for tukcron.schemas module."""

import pytest
from solders.pubkey import Pubkey

from tukcron.schemas import (
    AccountInfo,
    JobConfig,
    Outcome,
    ProvisionableResource,
    ProvisioningReport,
    ResourceState,
    ScheduledJob,
    validate_schedule,
)


class TestProvisionableResource:

    def test_create_path(self):
        resource = ProvisionableResource(name="job:x", kind="job")
        resource.transition(ResourceState.ABSENT)
        resource.transition(ResourceState.PROVISIONED)
        assert resource.exists

    def test_present_path(self):
        resource = ProvisionableResource(name="job:x", kind="job")
        resource.transition(ResourceState.PRESENT)
        assert resource.exists

    def test_cannot_create_without_check(self):
        resource = ProvisionableResource(name="job:x", kind="job")
        with pytest.raises(ValueError, match="illegal transition unknown -> provisioned"):
            resource.transition(ResourceState.PROVISIONED)

    def test_present_is_terminal(self):
        resource = ProvisionableResource(name="job:x", kind="job", state=ResourceState.PRESENT)
        with pytest.raises(ValueError):
            resource.transition(ResourceState.PROVISIONED)

    def test_failed_does_not_exist(self):
        resource = ProvisionableResource(name="job:x", kind="job", state=ResourceState.ABSENT)
        resource.transition(ResourceState.FAILED)
        assert not resource.exists


class TestValidateSchedule:

    @pytest.mark.parametrize("expr", [
        "0 * * * * *",
        "*/5 * * * *",
        "0 0 9-17 * * MON-FRI",
        "0 0 1,15 * * * 2030",
    ])
    def test_valid(self, expr):
        assert validate_schedule(expr) == expr

    def test_normalises_whitespace(self):
        assert validate_schedule("  0  * * * * ") == "0 * * * *"

    @pytest.mark.parametrize("expr", ["", "* * * *", "0 * * * * * * *", "0 * * * $"])
    def test_invalid(self, expr):
        with pytest.raises(ValueError):
            validate_schedule(expr)


class TestJobConfig:

    def test_defaults(self):
        config = JobConfig()
        assert (config.free_slots_per_invocation, config.slots_per_invocation) == (0, 1)

    def test_rejects_zero_slots(self):
        with pytest.raises(ValueError, match="slots_per_invocation"):
            JobConfig(slots_per_invocation=0)

    def test_rejects_negative_free_slots(self):
        with pytest.raises(ValueError, match="free_slots_per_invocation"):
            JobConfig(free_slots_per_invocation=-1)


class TestScheduledJob:

    def test_from_dict(self):
        job = ScheduledJob(
            name="hourly-ping",
            schedule="0 0 * * * *",
            address=Pubkey.new_unique(),
            authority=Pubkey.new_unique(),
            queue=Pubkey.new_unique(),
            job_id=2,
            config=JobConfig(free_slots_per_invocation=1, slots_per_invocation=2),
        )
        assert ScheduledJob.from_dict(job.to_dict()) == job
        assert job.slots_per_invocation == 2


class TestProvisioningReport:

    def test_outcomes(self):
        report = ProvisioningReport()
        report.record("a", "authority", Outcome.CREATED)
        report.record("b", "job", Outcome.EXISTS)
        report.record("c", "slot", Outcome.FAILED, detail="boom")

        assert [e.name for e in report.created] == ["a"]
        assert [e.name for e in report.existing] == ["b"]
        assert report.failed[0].detail == "boom"

    def test_get_returns_last_entry(self):
        report = ProvisioningReport()
        report.record("a", "job", Outcome.FAILED)
        report.record("a", "job", Outcome.EXISTS)
        assert report.get("a").outcome == Outcome.EXISTS
        assert report.get("missing") is None

    def test_to_dict(self):
        address = Pubkey.new_unique()
        report = ProvisioningReport(job="hourly-ping")
        report.addresses["cron_job"] = address
        report.record("job:hourly-ping", "job", Outcome.CREATED, address)

        data = report.to_dict()
        assert data["addresses"]["cron_job"] == str(address)
        assert data["entries"][0]["outcome"] == "created"


def test_account_info_base64_data():
    info = AccountInfo(lamports=1, owner=Pubkey.new_unique(), data=b"\x00\x01")
    assert AccountInfo.from_dict(info.to_dict()) == info
