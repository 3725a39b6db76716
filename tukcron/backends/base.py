"""
Collaborator interfaces consumed by the provisioning core.

This module defines the protocols any ledger or broker client must
implement, so the orchestration layer stays decoupled from the transport:

1. tukcron never talks RPC directly; it calls these methods
2. Backends can be swapped (RPC client, local simulation, mocks)
3. Testing is simplified via in-memory implementations

Implementations:
- InMemoryLedger / InMemoryBroker: tests and dry runs
- FileLedger / FileBroker: local simulation persisted to a JSON state file
"""

from typing import Optional, Protocol, Sequence, runtime_checkable

from solders.instruction import Instruction
from solders.pubkey import Pubkey

from tukcron.schemas import (
    AccountInfo,
    CompiledTransaction,
    JobConfig,
    QueueHandle,
    Receipt,
    ScheduledJob,
    TaskRecord,
)


@runtime_checkable
class Ledger(Protocol):
    """
    Protocol for the external account store.

    Errors:
        TransientError: Network failure, safe to retry
        Rejected: The store refused the submission (insufficient funds,
            constraint violation)
    """

    def get_account(self, address: Pubkey) -> Optional[AccountInfo]:
        """
        Fetch the account at an address.

        Returns:
            AccountInfo, or None when nothing exists at the address
        """
        ...

    def submit(self, instructions: Sequence[Instruction], signer: Pubkey) -> Receipt:
        """
        Submit instructions as one atomic transaction signed by signer.

        Returns:
            Receipt for the accepted transaction

        Raises:
            Rejected: If any instruction fails; no state changes are applied
        """
        ...


@runtime_checkable
class TaskBroker(Protocol):
    """
    Protocol for the external task queue and recurring-job broker.

    The broker serializes writes to a single job record, so the
    SlotOccupied check in attach_transaction is atomic.
    """

    # -------------------------------------------------------------------------
    # Queues
    # -------------------------------------------------------------------------

    def get_queue_by_name(self, name: str) -> Optional[QueueHandle]:
        ...

    def create_queue(self, name: str, capacity: int, min_crank_reward: int) -> QueueHandle:
        """
        Create a task queue. The queue id comes from the broker's own counter.

        Raises:
            Rejected: If a queue with this name exists
        """
        ...

    # -------------------------------------------------------------------------
    # Recurring jobs
    # -------------------------------------------------------------------------

    def get_job_by_name(self, name: str, authority: Pubkey) -> Optional[ScheduledJob]:
        ...

    def create_job(
        self,
        name: str,
        schedule: str,
        config: JobConfig,
        queue: QueueHandle,
        authority: Pubkey,
    ) -> ScheduledJob:
        """
        Create a recurring job.

        Raises:
            Rejected: If the job exists or the authority may not use the queue
            NotFound: If the queue is unknown
        """
        ...

    def attach_transaction(self, job: ScheduledJob, index: int, transaction: CompiledTransaction) -> Pubkey:
        """
        Register a compiled transaction at a slot index.

        Returns:
            Address of the slot record

        Raises:
            SlotOccupied: If the slot is already populated
            NotFound: If the job does not exist
        """
        ...

    def get_transaction(self, job: ScheduledJob, index: int) -> Optional[CompiledTransaction]:
        ...

    def list_jobs(self, authority: Optional[Pubkey] = None) -> list[ScheduledJob]:
        """Every job, or only those owned by authority."""
        ...

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
        """
        Queue a compiled transaction for immediate execution.

        Raises:
            SlotOccupied: If the task id is taken
            NotFound: If the queue is unknown
            Rejected: If the queue is full or the authority is not granted
        """
        ...

    def get_task(self, queue: QueueHandle, task_id: int) -> Optional[TaskRecord]:
        ...
