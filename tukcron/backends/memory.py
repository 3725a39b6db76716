"""
In-memory ledger and broker.

These simulate the external collaborators closely enough to exercise the
provisioning pipeline end to end:

InMemoryLedger:
- atomic submissions (a rejected transaction leaves state unchanged)
- signer check on every is_signer account meta
- system transfers with insufficient-funds rejection
- rent-exempt balance debited from the signer for every account created
- per-program handlers; programs without a handler get generic
  "initialise absent writable accounts" semantics
- optional upstream ledger read through for accounts not held locally
  (an ephemeral domain reading the primary domain's state)

InMemoryBroker:
- task queues with ids from the broker's own counter
- recurring jobs keyed by their name-mapping address (authority, name),
  job addresses from a per-authority job counter
- slot writes serialized under a lock; SlotOccupied on a second write

All data is lost when the instance is garbage collected.
"""

import dataclasses
import hashlib
import logging
import struct
import threading
from typing import Callable, Optional, Sequence

from solders.instruction import Instruction
from solders.pubkey import Pubkey
from solders.signature import Signature
from solders.system_program import ID as SYSTEM_PROGRAM_ID
from solders.system_program import decode_transfer

from tukcron import addresses
from tukcron import instructions as ixs
from tukcron.errors import NotFound, PermanentError, Rejected, SlotOccupied
from tukcron.instructions import rent_exempt_minimum
from tukcron.schemas import (
    AccountInfo,
    CompiledTransaction,
    JobConfig,
    QueueHandle,
    Receipt,
    ScheduledJob,
    TaskRecord,
)

from .base import Ledger


logger = logging.getLogger(__name__)


INTERACTION_ACCOUNT = ixs.account_discriminator("Interaction")


class AccountView:
    """
    Staged view of ledger accounts for one atomic submission.

    Reads fall through: staged writes, then local accounts, then upstream.
    Writes are collected in `writes` and only committed when every
    instruction of the submission succeeded.
    """

    def __init__(self, accounts: dict[Pubkey, AccountInfo], upstream: Optional[Ledger] = None):
        self._accounts = accounts
        self._upstream = upstream
        self.writes: dict[Pubkey, AccountInfo] = {}

    def get(self, address: Pubkey) -> Optional[AccountInfo]:
        if address in self.writes:
            return self.writes[address]
        if address in self._accounts:
            return self._accounts[address]
        if self._upstream is not None:
            return self._upstream.get_account(address)
        return None

    def put(self, address: Pubkey, info: AccountInfo) -> None:
        self.writes[address] = info

    def debit(self, address: Pubkey, lamports: int) -> None:
        if lamports == 0:
            return
        info = self.get(address)
        balance = info.lamports if info is not None else 0
        if balance < lamports:
            raise Rejected(
                f"insufficient funds: {address} has {balance} lamports, needs {lamports}"
            )
        self.put(address, dataclasses.replace(info, lamports=balance - lamports))

    def credit(self, address: Pubkey, lamports: int) -> None:
        info = self.get(address)
        if info is None:
            info = AccountInfo(lamports=0, owner=SYSTEM_PROGRAM_ID)
        self.put(address, dataclasses.replace(info, lamports=info.lamports + lamports))

    def init(self, address: Pubkey, owner: Pubkey, payer: Pubkey, data: bytes = b"") -> AccountInfo:
        """Create an account owned by `owner`, paying rent from `payer`."""
        if self.get(address) is not None:
            raise Rejected(f"account {address} already in use")
        rent = rent_exempt_minimum(len(data))
        self.debit(payer, rent)
        info = AccountInfo(lamports=rent, owner=owner, data=data)
        self.put(address, info)
        return info


ProgramHandler = Callable[[Instruction, Pubkey, AccountView], None]


def system_transfer_handler(ix: Instruction, signer: Pubkey, view: AccountView) -> None:
    """Apply a system program transfer."""
    try:
        params = decode_transfer(ix)
    except Exception as e:
        raise Rejected(f"unsupported system instruction: {e}") from e
    view.debit(params["from_pubkey"], params["lamports"])
    view.credit(params["to_pubkey"], params["lamports"])


def generic_init_handler(ix: Instruction, signer: Pubkey, view: AccountView) -> None:
    """Initialise every absent writable non-signer account, owned by the target program."""
    for meta in ix.accounts:
        if meta.is_writable and not meta.is_signer and view.get(meta.pubkey) is None:
            view.init(meta.pubkey, ix.program_id, payer=signer)


def _decode_string(data: bytes, offset: int) -> str:
    (length,) = struct.unpack_from("<I", data, offset)
    return data[offset + 4:offset + 4 + length].decode("utf-8")


class OracleProgramSimulator:
    """
    Handler simulating the oracle program's account effects.

    - create_llm_context: context address must match the counter's current
      value; the counter is bumped
    - interact_with_llm: creates or updates the interaction record; refused
      on the primary domain once the record is delegated, and refused on the
      ephemeral domain until it is
    - delegate_interaction: hands the record's ownership to the delegation
      program
    """

    def __init__(self, oracle_program: Pubkey, delegation_program: Pubkey, ephemeral: bool = False):
        self.oracle_program = oracle_program
        self.delegation_program = delegation_program
        self.ephemeral = ephemeral

    def __call__(self, ix: Instruction, signer: Pubkey, view: AccountView) -> None:
        data = bytes(ix.data)
        discriminator = data[:ixs.DISCRIMINATOR_LEN]
        if discriminator == ixs.CREATE_LLM_CONTEXT:
            self._create_context(ix, data, signer, view)
        elif discriminator == ixs.INTERACT_WITH_LLM:
            self._interact(ix, data, view)
        elif discriminator == ixs.DELEGATE_INTERACTION:
            self._delegate(ix, view)
        else:
            generic_init_handler(ix, signer, view)

    def _create_context(self, ix: Instruction, data: bytes, signer: Pubkey, view: AccountView) -> None:
        counter = ix.accounts[1].pubkey
        context = ix.accounts[2].pubkey

        counter_info = view.get(counter)
        if counter_info is None:
            raise Rejected("counter account not initialized")
        try:
            count = ixs.decode_counter(counter_info.data)
        except PermanentError as e:
            raise Rejected(str(e)) from e

        expected = addresses.context_key(count, self.oracle_program)
        if context != expected:
            raise Rejected(
                f"seeds constraint violated: context must be {expected} (counter at {count})"
            )

        text = _decode_string(data, ixs.DISCRIMINATOR_LEN)
        view.init(context, self.oracle_program, payer=signer, data=ixs.encode_context(text))
        view.put(counter, dataclasses.replace(counter_info, data=ixs.encode_counter(count + 1)))

    def _interact(self, ix: Instruction, data: bytes, view: AccountView) -> None:
        payer = ix.accounts[0].pubkey
        interaction = ix.accounts[1].pubkey
        context = ix.accounts[2].pubkey

        if view.get(context) is None:
            raise Rejected(f"context account {context} does not exist")

        existing = view.get(interaction)
        delegated = existing is not None and existing.owner == self.delegation_program
        record = INTERACTION_ACCOUNT + ixs.borsh_string(_decode_string(data, ixs.DISCRIMINATOR_LEN))

        if self.ephemeral and not delegated:
            raise Rejected(f"interaction {interaction} is not delegated to this domain")
        if not self.ephemeral and delegated:
            raise Rejected(f"interaction {interaction} is delegated; submit to the ephemeral domain")

        if existing is None:
            view.init(interaction, self.oracle_program, payer=payer, data=record)
        else:
            view.put(interaction, dataclasses.replace(existing, data=record))

    def _delegate(self, ix: Instruction, view: AccountView) -> None:
        interaction = ix.accounts[1].pubkey
        existing = view.get(interaction)
        if existing is None:
            raise Rejected(f"interaction {interaction} does not exist")
        if existing.owner == self.delegation_program:
            raise Rejected(f"interaction {interaction} is already delegated")
        if existing.owner != self.oracle_program:
            raise Rejected(f"interaction {interaction} is not owned by {self.oracle_program}")
        view.put(interaction, dataclasses.replace(existing, owner=self.delegation_program))


class InMemoryLedger:
    """
    In-memory implementation of the Ledger protocol.

    Attributes:
        submissions: Every accepted submission, in order
    """

    def __init__(
        self,
        handlers: Optional[dict[Pubkey, ProgramHandler]] = None,
        upstream: Optional[Ledger] = None,
        default_handler: ProgramHandler = generic_init_handler,
    ):
        self._accounts: dict[Pubkey, AccountInfo] = {}
        self._handlers: dict[Pubkey, ProgramHandler] = {SYSTEM_PROGRAM_ID: system_transfer_handler}
        self._handlers.update(handlers or {})
        self._default_handler = default_handler
        self._upstream = upstream
        self._slot = 0
        self._lock = threading.Lock()
        self.submissions: list[tuple[Instruction, ...]] = []

    def register_program(self, program_id: Pubkey, handler: ProgramHandler) -> None:
        self._handlers[program_id] = handler

    def get_account(self, address: Pubkey) -> Optional[AccountInfo]:
        info = self._accounts.get(address)
        if info is None and self._upstream is not None:
            return self._upstream.get_account(address)
        return info

    def submit(self, instructions: Sequence[Instruction], signer: Pubkey) -> Receipt:
        if not instructions:
            raise Rejected("transaction has no instructions")

        with self._lock:
            for ix in instructions:
                for meta in ix.accounts:
                    if meta.is_signer and meta.pubkey != signer:
                        raise Rejected(f"missing required signature for {meta.pubkey}")

            view = AccountView(self._accounts, self._upstream)
            for ix in instructions:
                handler = self._handlers.get(ix.program_id, self._default_handler)
                handler(ix, signer, view)

            self._accounts.update(view.writes)
            self._slot += 1
            self.submissions.append(tuple(instructions))
            receipt = Receipt(signature=self._signature(instructions, signer), slot=self._slot)

        logger.debug(f"Accepted {len(instructions)} instruction(s) at slot {receipt.slot}")
        self._on_change()
        return receipt

    def airdrop(self, address: Pubkey, lamports: int) -> None:
        """Credit lamports to an address (creating a system account if needed)."""
        with self._lock:
            view = AccountView(self._accounts)
            view.credit(address, lamports)
            self._accounts.update(view.writes)
        self._on_change()

    def set_account(self, address: Pubkey, info: AccountInfo) -> None:
        """Write an account directly (genesis state, test setup)."""
        with self._lock:
            self._accounts[address] = info
        self._on_change()

    def accounts(self) -> dict[Pubkey, AccountInfo]:
        return dict(self._accounts)

    @property
    def slot(self) -> int:
        return self._slot

    def _signature(self, instructions: Sequence[Instruction], signer: Pubkey) -> str:
        digest = hashlib.sha512()
        digest.update(struct.pack("<Q", self._slot))
        digest.update(bytes(signer))
        for ix in instructions:
            digest.update(bytes(ix.program_id))
            digest.update(bytes(ix.data))
        return str(Signature(digest.digest()))

    def _on_change(self) -> None:
        """Hook for persistent subclasses."""
        pass


class InMemoryBroker:
    """
    In-memory implementation of the TaskBroker protocol.

    When a ledger is supplied, job creation and task queueing require the
    authority's queue grant to exist on it, which enforces the
    "authority before job" provisioning order.
    """

    def __init__(
        self,
        tuktuk_program: Pubkey,
        cron_program: Pubkey,
        ledger: Optional[Ledger] = None,
    ):
        self.tuktuk_program = tuktuk_program
        self.cron_program = cron_program
        self._ledger = ledger
        self._queues: dict[str, QueueHandle] = {}
        self._next_queue_id = 0
        self._jobs: dict[Pubkey, ScheduledJob] = {}
        self._next_job_id: dict[Pubkey, int] = {}
        self._tasks: dict[tuple[Pubkey, int], TaskRecord] = {}
        self._lock = threading.Lock()

    @property
    def config_address(self) -> Pubkey:
        return addresses.tuktuk_config_key(self.tuktuk_program)

    # -------------------------------------------------------------------------
    # Queues
    # -------------------------------------------------------------------------

    def get_queue_by_name(self, name: str) -> Optional[QueueHandle]:
        return self._queues.get(name)

    def create_queue(self, name: str, capacity: int, min_crank_reward: int) -> QueueHandle:
        with self._lock:
            if name in self._queues:
                raise Rejected(f"task queue '{name}' already exists")
            queue_id = self._next_queue_id
            queue = QueueHandle(
                name=name,
                address=addresses.task_queue_key(self.config_address, queue_id, self.tuktuk_program),
                queue_id=queue_id,
                capacity=capacity,
                min_crank_reward=min_crank_reward,
            )
            self._queues[name] = queue
            self._next_queue_id += 1
        self._on_change()
        return queue

    # -------------------------------------------------------------------------
    # Recurring jobs
    # -------------------------------------------------------------------------

    def job_key(self, name: str, authority: Pubkey) -> Pubkey:
        """Name-mapping address under which a job is looked up."""
        return addresses.cron_job_name_mapping_key(authority, name, self.cron_program)

    def get_job_by_name(self, name: str, authority: Pubkey) -> Optional[ScheduledJob]:
        job = self._jobs.get(self.job_key(name, authority))
        if job is None:
            return None
        return dataclasses.replace(job, slots=dict(job.slots))

    def create_job(
        self,
        name: str,
        schedule: str,
        config: JobConfig,
        queue: QueueHandle,
        authority: Pubkey,
    ) -> ScheduledJob:
        with self._lock:
            key = self.job_key(name, authority)
            if key in self._jobs:
                raise Rejected(f"cron job '{name}' already exists for {authority}")
            if queue.name not in self._queues:
                raise NotFound(f"task queue '{queue.name}' not found")
            self._require_grant(queue, authority)

            job_id = self._next_job_id.get(authority, 0)
            job = ScheduledJob(
                name=name,
                schedule=schedule,
                address=addresses.cron_job_key(authority, job_id, self.cron_program),
                authority=authority,
                queue=queue.address,
                job_id=job_id,
                config=config,
            )
            self._jobs[key] = job
            self._next_job_id[authority] = job_id + 1
        self._on_change()
        return dataclasses.replace(job, slots={})

    def attach_transaction(self, job: ScheduledJob, index: int, transaction: CompiledTransaction) -> Pubkey:
        with self._lock:
            stored = self._jobs.get(self.job_key(job.name, job.authority))
            if stored is None:
                raise NotFound(f"cron job '{job.name}' not found")
            if index in stored.slots:
                raise SlotOccupied(f"cron job '{job.name}' slot {index} is already populated", index=index)
            stored.slots[index] = transaction
        self._on_change()
        return addresses.cron_job_transaction_key(stored.address, index, self.cron_program)

    def get_transaction(self, job: ScheduledJob, index: int) -> Optional[CompiledTransaction]:
        stored = self._jobs.get(self.job_key(job.name, job.authority))
        if stored is None:
            return None
        return stored.slots.get(index)

    def list_jobs(self, authority: Optional[Pubkey] = None) -> list[ScheduledJob]:
        return [
            dataclasses.replace(j, slots=dict(j.slots))
            for j in self._jobs.values()
            if authority is None or j.authority == authority
        ]

    # -------------------------------------------------------------------------
    # One-shot tasks
    # -------------------------------------------------------------------------

    def queue_task(
        self,
        queue: QueueHandle,
        queue_authority: Pubkey,
        task_id: int,
        transaction: CompiledTransaction,
        crank_reward: Optional[int] = None,
        free_tasks: int = 0,
        description: str = "",
    ) -> TaskRecord:
        with self._lock:
            stored = self._queues.get(queue.name)
            if stored is None:
                raise NotFound(f"task queue '{queue.name}' not found")
            self._require_grant(stored, queue_authority)
            if (stored.address, task_id) in self._tasks:
                raise SlotOccupied(f"task {task_id} already queued on '{queue.name}'", index=task_id)
            queued = sum(1 for (q, _) in self._tasks if q == stored.address)
            if queued >= stored.capacity:
                raise Rejected(f"task queue '{queue.name}' is full ({stored.capacity} tasks)")
            if crank_reward is not None and crank_reward < stored.min_crank_reward:
                raise Rejected(
                    f"crank reward {crank_reward} below queue minimum {stored.min_crank_reward}"
                )

            task = TaskRecord(
                queue=stored.address,
                task_id=task_id,
                address=addresses.task_key(stored.address, task_id, self.tuktuk_program),
                transaction=transaction,
                crank_reward=crank_reward,
                free_tasks=free_tasks,
                description=description,
                queue_authority=queue_authority,
            )
            self._tasks[(stored.address, task_id)] = task
        self._on_change()
        return task

    def get_task(self, queue: QueueHandle, task_id: int) -> Optional[TaskRecord]:
        return self._tasks.get((queue.address, task_id))

    def _require_grant(self, queue: QueueHandle, authority: Pubkey) -> None:
        if self._ledger is None:
            return
        grant = addresses.task_queue_authority_key(queue.address, authority, self.tuktuk_program)
        if self._ledger.get_account(grant) is None:
            raise Rejected(f"{authority} is not a queue authority of '{queue.name}'")

    def _on_change(self) -> None:
        """Hook for persistent subclasses."""
        pass
