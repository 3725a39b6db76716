"""
Registrar - recurring jobs, their transaction slots, queues and one-shot tasks.

A recurring job is created once (then funded), populated at slot 0 with a
compiled transaction, and left running until an operator closes it. The
broker re-submits each slot's transaction on the job's cron schedule.

Guards:
- ensure_job never updates a live job: a differing schedule or config on
  an existing job is only reported as a warning
- attach_slot raises SlotOccupied for a populated slot (content unchanged);
  ensure_slot converts that into an EXISTS report entry
"""

import logging
from typing import Optional, Sequence

from solders.pubkey import Pubkey

from tukcron import addresses
from tukcron.backends.base import TaskBroker
from tukcron.errors import AuthorityMismatch, NotFound, Rejected, SlotOccupied
from tukcron.provisioner import Provisioner
from tukcron.schemas import (
    CompiledTransaction,
    JobConfig,
    Outcome,
    QueueHandle,
    ResourceState,
    ScheduledJob,
    TaskRecord,
    validate_schedule,
)


logger = logging.getLogger(__name__)


def close_commands(rpc_url: str, wallet: str, cron_name: str, index: int = 0) -> list[str]:
    """Operator commands that stop a running job (slot first, then the job)."""
    return [
        f"tuktuk -u {rpc_url} -w {wallet} cron-transaction close --cron-name {cron_name} --id {index}",
        f"tuktuk -u {rpc_url} -w {wallet} cron close --cron-name {cron_name}",
    ]


class Registrar:
    """Registers jobs and tasks with the broker, idempotently."""

    def __init__(self, broker: TaskBroker, provisioner: Provisioner, cron_program: Pubkey):
        self.broker = broker
        self.provisioner = provisioner
        self.cron_program = cron_program

    @property
    def report(self):
        return self.provisioner.report

    # -------------------------------------------------------------------------
    # Queues
    # -------------------------------------------------------------------------

    def resolve_queue(self, name: str) -> QueueHandle:
        """
        Look up an existing task queue.

        Raises:
            NotFound: If no queue with this name exists
        """
        queue = self.broker.get_queue_by_name(name)
        if queue is None:
            raise NotFound(f"Task queue '{name}' not found; create it first")
        logger.debug(f"Resolved task queue '{name}' at {queue.address} (id {queue.queue_id})")
        return queue

    def ensure_queue(self, name: str, capacity: int = 10, min_crank_reward: int = 0) -> QueueHandle:
        """Create a task queue unless one with this name exists."""
        resource = self.provisioner.ensure(
            f"queue:{name}",
            "queue",
            lookup=lambda: self.broker.get_queue_by_name(name),
            create=lambda: self.broker.create_queue(name, capacity, min_crank_reward),
            address_of=lambda q: q.address,
        )
        return resource.handle

    # -------------------------------------------------------------------------
    # Recurring jobs
    # -------------------------------------------------------------------------

    def ensure_job(
        self,
        name: str,
        schedule: str,
        config: JobConfig,
        queue: QueueHandle,
        authority: Pubkey,
        funding_lamports: Optional[int] = None,
    ) -> ScheduledJob:
        """
        Ensure a recurring job exists, creating and funding it if absent.

        Args:
            name: Job name (unique per authority)
            schedule: Cron expression
            config: Per-invocation limits
            queue: Task queue the job feeds
            authority: Job owner
            funding_lamports: Transfer to the job right after creation

        Returns:
            The existing or newly created job

        Raises:
            ValueError: If the schedule is malformed
            Rejected: If creation or funding is refused
        """
        schedule = validate_schedule(schedule)

        resource = self.provisioner.ensure(
            f"job:{name}",
            "job",
            lookup=lambda: self.broker.get_job_by_name(name, authority),
            create=lambda: self.broker.create_job(name, schedule, config, queue, authority),
            address_of=lambda j: j.address,
            required_balance=funding_lamports,
        )
        job: ScheduledJob = resource.handle

        if resource.state == ResourceState.PRESENT:
            if job.schedule != schedule:
                logger.warning(
                    f"Job '{name}' exists with schedule '{job.schedule}', "
                    f"requested '{schedule}'; live jobs are not updated"
                )
            if job.config != config:
                logger.warning(
                    f"Job '{name}' exists with config {job.config.to_dict()}, "
                    f"requested {config.to_dict()}; live jobs are not updated"
                )
        return job

    def attach_slot(self, job: ScheduledJob, index: int, compiled: CompiledTransaction) -> Pubkey:
        """
        Register a compiled transaction at a job slot.

        Returns:
            Address of the slot record

        Raises:
            SlotOccupied: If the slot is already populated
            NotFound: If the job does not exist
        """
        slot = self.broker.attach_transaction(job, index, compiled)
        logger.info(f"Attached transaction {compiled.digest} to '{job.name}' slot {index}")
        self.report.record(f"slot:{job.name}/{index}", "slot", Outcome.CREATED, slot, compiled.digest)
        return slot

    def ensure_slot(self, job: ScheduledJob, index: int, compiled: CompiledTransaction) -> Pubkey:
        """attach_slot, with an already populated slot reported as EXISTS."""
        try:
            return self.attach_slot(job, index, compiled)
        except SlotOccupied:
            slot = addresses.cron_job_transaction_key(job.address, index, self.cron_program)
            stored = self.broker.get_transaction(job, index)
            detail = stored.digest if stored is not None else ""
            if stored is not None and stored.digest != compiled.digest:
                logger.warning(
                    f"'{job.name}' slot {index} holds {stored.digest}, "
                    f"requested {compiled.digest}; slot left unchanged"
                )
            else:
                logger.info(f"'{job.name}' slot {index} already populated, skipping")
            self.report.record(f"slot:{job.name}/{index}", "slot", Outcome.EXISTS, slot, detail)
            return slot

    # -------------------------------------------------------------------------
    # One-shot tasks
    # -------------------------------------------------------------------------

    def queue_task(
        self,
        queue: QueueHandle,
        queue_authority: Pubkey,
        task_id: int,
        compiled: CompiledTransaction,
        crank_reward: Optional[int] = None,
        free_tasks: int = 0,
        description: str = "",
        funding_lamports: Optional[int] = None,
        authority_seeds: Optional[Sequence[bytes]] = None,
        authority_program: Optional[Pubkey] = None,
    ) -> TaskRecord:
        """
        Queue a compiled transaction for immediate execution.

        Args:
            queue: Task queue to queue on
            queue_authority: Granted authority queueing the task
            task_id: Task id (u16) within the queue
            compiled: Transaction the broker runs
            crank_reward: Reward for the cranker (queue default when None)
            free_tasks: Follow-up tasks the transaction may queue for free
            description: Operator-facing description
            funding_lamports: Transfer to the task address once queued, for
                a transaction in which the task pays for what it creates
            authority_seeds: Signer seeds (bump last) when queue_authority is
                a program address signing on the program's behalf
            authority_program: Program the authority seeds belong to

        Raises:
            SlotOccupied: If the task id is taken on this queue
            NotFound: If the queue is unknown
            Rejected: If the queue is full, the authority is not granted or
                funding is refused
            AuthorityMismatch: If the seeds do not sign for queue_authority
        """
        if authority_seeds is not None:
            if authority_program is None:
                raise ValueError("authority_seeds require authority_program")
            signer = Pubkey.create_program_address(list(authority_seeds), authority_program)
            if signer != queue_authority:
                raise AuthorityMismatch(
                    f"Signer seeds derive {signer}, not queue authority {queue_authority}"
                )

        name = f"task:{queue.name}/{task_id}"
        task = self.broker.queue_task(
            queue,
            queue_authority,
            task_id,
            compiled,
            crank_reward=crank_reward,
            free_tasks=free_tasks,
            description=description,
        )
        logger.info(f"Queued task {task_id} on '{queue.name}' at {task.address}")

        detail = description
        if funding_lamports:
            try:
                self.provisioner.fund(task.address, funding_lamports)
            except Rejected as e:
                logger.error(f"Task {task_id} queued but funding failed: {e}")
                self.report.record(name, "task", Outcome.FAILED, task.address, f"queued but funding failed: {e}")
                raise
            detail = f"funded {funding_lamports} lamports"

        self.report.record(name, "task", Outcome.CREATED, task.address, detail)
        return task
