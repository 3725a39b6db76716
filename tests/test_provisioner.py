"""Tests for tukcron.provisioner module.

Tests cover:
- check-then-create: absent resources are created, present ones skipped
- funding is issued right after creation and never for present resources
- Rejected marks the resource FAILED, records it and propagates
- existence checks retry TransientError only
"""

import pytest
from solders.pubkey import Pubkey

from tukcron import addresses
from tukcron import instructions as ixs
from tukcron.errors import NotFound, PermanentError, Rejected, TransientError
from tukcron.provisioner import Provisioner, read_counter
from tukcron.schemas import Outcome, ResourceState


@pytest.fixture
def provisioner(ledger, wallet):
    return Provisioner(ledger, wallet, max_attempts=3, backoff_seconds=0)


def _grant_builder(programs, wallet, queue, grant):
    return lambda: [ixs.add_queue_authority_ix(programs.tuktuk, wallet, wallet, wallet, grant, queue.address)]


class TestEnsureAccount:

    def test_absent_account_created(self, provisioner, ledger, programs, wallet, queue):
        grant = addresses.task_queue_authority_key(queue.address, wallet, programs.tuktuk)
        resource = provisioner.ensure_account(
            "queue-authority", "authority", grant, _grant_builder(programs, wallet, queue, grant),
        )

        assert resource.state == ResourceState.PROVISIONED
        assert ledger.get_account(grant) is not None
        entry = provisioner.report.get("queue-authority")
        assert entry.outcome == Outcome.CREATED
        assert entry.address == grant

    def test_present_account_skipped(self, provisioner, ledger, programs, wallet, queue):
        grant = addresses.task_queue_authority_key(queue.address, wallet, programs.tuktuk)
        build = _grant_builder(programs, wallet, queue, grant)
        provisioner.ensure_account("queue-authority", "authority", grant, build)
        submitted = len(ledger.submissions)

        resource = provisioner.ensure_account("queue-authority", "authority", grant, build)

        assert resource.state == ResourceState.PRESENT
        assert len(ledger.submissions) == submitted
        assert provisioner.report.get("queue-authority").outcome == Outcome.EXISTS

    def test_funding_follows_creation(self, provisioner, ledger, programs, wallet, queue):
        grant = addresses.task_queue_authority_key(queue.address, wallet, programs.tuktuk)
        resource = provisioner.ensure_account(
            "queue-authority", "authority", grant,
            _grant_builder(programs, wallet, queue, grant),
            required_balance=5000,
        )

        assert resource.funded
        assert len(ledger.submissions) == 2
        assert ledger.get_account(grant).lamports >= 5000
        assert "funded 5000" in provisioner.report.get("queue-authority").detail

    def test_present_account_not_funded(self, provisioner, ledger, wallet):
        existing = Pubkey.new_unique()
        ledger.airdrop(existing, 1)
        provisioner.ensure_account("thing", "account", existing, lambda: [], required_balance=5000)

        assert ledger.get_account(existing).lamports == 1
        assert ledger.submissions == []

    def test_rejected_creation(self, provisioner, ledger, programs, wallet):
        context = addresses.context_key(5, programs.oracle)
        build = lambda: [ixs.create_llm_context_ix(
            programs.oracle, wallet, addresses.counter_key(programs.oracle), context, "x",
        )]

        with pytest.raises(Rejected):
            provisioner.ensure_account("context", "context", context, build)

        entry = provisioner.report.get("context")
        assert entry.outcome == Outcome.FAILED
        assert "seeds constraint" in entry.detail

    def test_rejected_funding_reported(self, provisioner, programs, wallet, queue):
        grant = addresses.task_queue_authority_key(queue.address, wallet, programs.tuktuk)
        with pytest.raises(Rejected):
            provisioner.ensure_account(
                "queue-authority", "authority", grant,
                _grant_builder(programs, wallet, queue, grant),
                required_balance=100 * ixs.LAMPORTS_PER_SOL,
            )
        assert "funding failed" in provisioner.report.get("queue-authority").detail


class TestEnsure:

    def test_address_from_handle(self, provisioner, broker):
        resource = provisioner.ensure(
            "queue:q", "queue",
            lookup=lambda: broker.get_queue_by_name("q"),
            create=lambda: broker.create_queue("q", 10, 0),
            address_of=lambda q: q.address,
        )
        assert resource.address == broker.get_queue_by_name("q").address

    def test_lookup_retried_on_transient_error(self, provisioner):
        calls = []

        def flaky_lookup():
            calls.append(1)
            if len(calls) < 3:
                raise TransientError("timeout")
            return "present"

        resource = provisioner.ensure("r", "thing", lookup=flaky_lookup, create=lambda: None)
        assert len(calls) == 3
        assert resource.state == ResourceState.PRESENT

    def test_lookup_not_retried_on_permanent_error(self, provisioner):
        calls = []

        def broken_lookup():
            calls.append(1)
            raise PermanentError("bad request")

        with pytest.raises(PermanentError):
            provisioner.ensure("r", "thing", lookup=broken_lookup, create=lambda: None)
        assert len(calls) == 1

    def test_lookup_gives_up_after_max_attempts(self, provisioner):
        def down():
            raise TransientError("timeout")

        with pytest.raises(TransientError):
            provisioner.ensure("r", "thing", lookup=down, create=lambda: None)
        assert provisioner.report.entries == []


class TestReadCounter:

    def test_reads_value(self, ledger, programs):
        assert read_counter(ledger, addresses.counter_key(programs.oracle)) == 0

    def test_missing_counter(self, ledger):
        with pytest.raises(NotFound):
            read_counter(ledger, Pubkey.new_unique())
