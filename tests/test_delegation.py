"""Tests for tukcron.delegation module."""

import pytest
from solders.pubkey import Pubkey

from tukcron import addresses
from tukcron import instructions as ixs
from tukcron.delegation import DelegationCoordinator, ExecutionRouter
from tukcron.errors import AlreadyDelegated, AuthorityMismatch, NotFound
from tukcron.schemas import ExecutionDomain, Outcome


@pytest.fixture
def context(ledger, programs, wallet):
    address = addresses.context_key(0, programs.oracle)
    ledger.submit([ixs.create_llm_context_ix(
        programs.oracle, wallet, addresses.counter_key(programs.oracle), address, "ctx",
    )], signer=wallet)
    return address


@pytest.fixture
def interaction(ledger, programs, wallet, context):
    address = addresses.interaction_key(wallet, context, programs.oracle)
    ledger.submit([ixs.interact_with_llm_ix(
        programs.oracle, wallet, address, context, "hi", programs.oracle,
    )], signer=wallet)
    return address


@pytest.fixture
def coordinator(ledger, programs, wallet, context):
    return DelegationCoordinator(
        ledger,
        wallet,
        owner_program=programs.oracle,
        delegation_program=programs.delegation,
        build_instructions=lambda resource: [ixs.delegate_interaction_ix(
            programs.oracle, wallet, resource, context, programs.delegation,
        )],
    )


@pytest.fixture
def router(ledger, ephemeral_ledger, programs, ephemeral_domain):
    return ExecutionRouter(
        ledger,
        ephemeral_ledger,
        programs.delegation,
        ExecutionDomain(name="primary", endpoint="https://api.devnet.solana.com"),
        ephemeral_domain,
    )


class TestDelegationCoordinator:

    def test_delegate(self, coordinator, ledger, programs, interaction, ephemeral_domain):
        handle = coordinator.delegate(interaction, ephemeral_domain)

        assert handle.active
        assert handle.domain == ephemeral_domain
        assert handle.signature
        assert ledger.get_account(interaction).owner == programs.delegation
        assert coordinator.report.get(f"delegation:{interaction}").outcome == Outcome.CREATED

    def test_missing_resource(self, coordinator, ephemeral_domain):
        with pytest.raises(NotFound):
            coordinator.delegate(Pubkey.new_unique(), ephemeral_domain)

    def test_already_delegated(self, coordinator, interaction, ephemeral_domain):
        coordinator.delegate(interaction, ephemeral_domain)
        with pytest.raises(AlreadyDelegated):
            coordinator.delegate(interaction, ephemeral_domain)

    def test_foreign_owner(self, coordinator, ledger, ephemeral_domain):
        system_account = Pubkey.new_unique()
        ledger.airdrop(system_account, 1)
        with pytest.raises(AuthorityMismatch):
            coordinator.delegate(system_account, ephemeral_domain)

    def test_ensure_delegated_reports_exists(self, coordinator, ledger, interaction, ephemeral_domain):
        coordinator.ensure_delegated(interaction, ephemeral_domain)
        submitted = len(ledger.submissions)

        handle = coordinator.ensure_delegated(interaction, ephemeral_domain)

        assert handle.active
        assert handle.signature is None
        assert len(ledger.submissions) == submitted
        assert coordinator.report.get(f"delegation:{interaction}").outcome == Outcome.EXISTS


class TestExecutionRouter:

    def test_undelegated_routes_to_primary(self, router, ledger, interaction):
        assert router.domain_for(interaction).name == "primary"
        assert router.ledger_for(interaction) is ledger

    def test_delegated_on_ledger_routes_to_ephemeral(self, router, coordinator, ephemeral_ledger, interaction, ephemeral_domain):
        coordinator.delegate(interaction, ephemeral_domain)

        assert router.is_delegated(interaction)
        assert router.ledger_for(interaction) is ephemeral_ledger

    def test_registered_handle_routes_to_ephemeral(self, router, coordinator, interaction, ephemeral_domain):
        router.register(coordinator.ensure_delegated(interaction, ephemeral_domain))
        assert router.domain_for(interaction) == ephemeral_domain

    def test_submit_after_delegation(self, router, coordinator, ledger, ephemeral_ledger, programs, wallet, context, interaction, ephemeral_domain):
        coordinator.delegate(interaction, ephemeral_domain)
        ix = ixs.interact_with_llm_ix(programs.oracle, wallet, interaction, context, "again", programs.oracle)
        primary_submissions = len(ledger.submissions)

        router.submit(interaction, [ix], signer=wallet)

        assert len(ephemeral_ledger.submissions) == 1
        assert len(ledger.submissions) == primary_submissions
