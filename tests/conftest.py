import pytest
from solders.pubkey import Pubkey

from tukcron import addresses
from tukcron import instructions as ixs
from tukcron.backends import InMemoryBroker, InMemoryLedger, OracleProgramSimulator, rent_exempt_minimum
from tukcron.config import ProgramIds, TukcronConfig
from tukcron.schemas import AccountInfo, ExecutionDomain


WALLET_BALANCE = 10 * ixs.LAMPORTS_PER_SOL


@pytest.fixture
def programs():
    return ProgramIds.from_dict({})


@pytest.fixture
def wallet():
    return Pubkey.new_unique()


def seed_counter(ledger, programs, count=0):
    data = ixs.encode_counter(count)
    ledger.set_account(
        addresses.counter_key(programs.oracle),
        AccountInfo(lamports=rent_exempt_minimum(len(data)), owner=programs.oracle, data=data),
    )


@pytest.fixture
def ledger(programs, wallet):
    """Primary ledger with a funded wallet and an oracle counter at 0."""
    ledger = InMemoryLedger(
        handlers={programs.oracle: OracleProgramSimulator(programs.oracle, programs.delegation)},
    )
    ledger.airdrop(wallet, WALLET_BALANCE)
    seed_counter(ledger, programs)
    return ledger


@pytest.fixture
def ephemeral_ledger(programs, ledger):
    return InMemoryLedger(
        handlers={programs.oracle: OracleProgramSimulator(programs.oracle, programs.delegation, ephemeral=True)},
        upstream=ledger,
    )


@pytest.fixture
def broker(programs, ledger):
    return InMemoryBroker(programs.tuktuk, programs.cron, ledger=ledger)


@pytest.fixture
def queue(broker):
    return broker.create_queue("test-queue", capacity=10, min_crank_reward=0)


@pytest.fixture
def ephemeral_domain():
    return ExecutionDomain(
        name="ephemeral",
        endpoint="https://devnet.magicblock.app/",
        ws_endpoint="wss://devnet.magicblock.app/",
    )


@pytest.fixture
def test_config(wallet, tmp_path):
    return TukcronConfig(
        wallet=str(wallet),
        cron_name="hourly-ping",
        queue_name="test-queue",
        schedule="0 0 * * * *",
        state_path=str(tmp_path / "state.json"),
        retry={"max_attempts": 2, "backoff_seconds": 0},
    )
