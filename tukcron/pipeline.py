"""
Schedule pipeline - provision, compile and register one recurring interaction.

Order of operations (each step is check-then-create, so the whole run is
safe to repeat):

1. Resolve the task queue by name (must already exist)
2. Derive every address: queue authority grant, counter, context,
   interaction
3. Queue authority grant for the payer (before the job: the broker refuses
   jobs from authorities without a grant)
4. Context record at the configured index (creatable only while the
   counter equals that index)
5. Recurring job: create, then fund with funding_lamports
6. Compile the interact_with_llm instruction
7. Attach the compiled transaction at slot 0
8. Optionally provision the interaction record and delegate it to the
   ephemeral domain

queue_interaction covers the one-shot path: the oracle program's queue
authority is granted on the queue, and the task is queued with the task
itself as payer of the interaction, funded with that record's rent.

A Rejected or NotFound from any step (or a ledger that stays unreachable
through the lookup retries) halts the run: the report is marked
halted and PipelineHalted is raised carrying it. Nothing is rolled back.
"""

import logging
from dataclasses import dataclass, field
from typing import Optional

from solders.pubkey import Pubkey

from tukcron import addresses
from tukcron import instructions as ixs
from tukcron.backends.base import Ledger, TaskBroker
from tukcron.compiler import Compiler
from tukcron.config import ProgramIds, TukcronConfig
from tukcron.delegation import DelegationCoordinator
from tukcron.errors import NotFound, PermanentError, PipelineHalted, TransientError
from tukcron.provisioner import Provisioner, read_counter
from tukcron.registrar import Registrar
from tukcron.schemas import (
    CompiledTransaction,
    DelegationHandle,
    ExecutionDomain,
    JobConfig,
    ProvisioningReport,
    validate_schedule,
)


logger = logging.getLogger(__name__)


# One-shot interaction tasks, as the oracle program queues them
TASK_CRANK_REWARD = 1_000_002
TASK_FREE_TASKS = 1
TASK_DESCRIPTION = "Scheduled LLM interaction"


@dataclass
class ScheduleRequest:
    """Plain values describing one scheduled interaction."""
    cron_name: str
    queue_name: str
    schedule: str = "0 * * * * *"
    funding_lamports: int = ixs.LAMPORTS_PER_SOL // 100
    context_index: int = 0
    context_text: str = "You are a helpful assistant."
    interaction_text: str = "Scheduled interaction from TukTuk cron"
    job_config: JobConfig = field(default_factory=JobConfig)
    delegate: bool = False

    @classmethod
    def from_config(cls, config: TukcronConfig, delegate: bool = False) -> "ScheduleRequest":
        return cls(
            cron_name=config.cron_name,
            queue_name=config.queue_name,
            schedule=config.schedule,
            funding_lamports=config.funding_lamports,
            context_index=config.context_index,
            context_text=config.context_text,
            interaction_text=config.interaction_text,
            job_config=JobConfig(
                free_slots_per_invocation=config.free_tasks_per_transaction,
                slots_per_invocation=config.num_tasks_per_queue_call,
            ),
            delegate=delegate,
        )


def derive_addresses(
    programs: ProgramIds,
    payer: Pubkey,
    task_queue: Pubkey,
    context_index: int,
) -> dict[str, Pubkey]:
    """Every address the pipeline touches that is known before any lookup."""
    context = addresses.context_key(context_index, programs.oracle)
    return {
        "task_queue": task_queue,
        "task_queue_authority": addresses.task_queue_authority_key(task_queue, payer, programs.tuktuk),
        "counter": addresses.counter_key(programs.oracle),
        "context": context,
        "interaction": addresses.interaction_key(payer, context, programs.oracle),
    }


class SchedulePipeline:
    """
    Runs the scheduling workflow against a ledger and a broker.

    Usage:
        pipeline = SchedulePipeline(ledger, broker, payer, programs)
        report = pipeline.run(ScheduleRequest(cron_name="hourly-ping", queue_name="q"))
    """

    def __init__(
        self,
        ledger: Ledger,
        broker: TaskBroker,
        payer: Pubkey,
        programs: ProgramIds,
        ephemeral_domain: Optional[ExecutionDomain] = None,
        compiler: Optional[Compiler] = None,
        max_attempts: int = 3,
        backoff_seconds: float = 0.5,
    ):
        self.ledger = ledger
        self.broker = broker
        self.payer = payer
        self.programs = programs
        self.ephemeral_domain = ephemeral_domain
        self.compiler = compiler or Compiler()
        self._max_attempts = max_attempts
        self._backoff_seconds = backoff_seconds

    def run(self, request: ScheduleRequest) -> ProvisioningReport:
        """
        Run the workflow once.

        Returns:
            Report of every provisioning decision

        Raises:
            PipelineHalted: If a step was rejected, a prerequisite is missing or
                the ledger stayed unreachable
            ValueError: If the schedule expression is malformed (checked before
                anything is looked up or submitted)
            InvalidSeed: If context_index does not fit in a u32 (same)
        """
        validate_schedule(request.schedule)
        addresses.u32_seed(request.context_index)

        report = ProvisioningReport(job=request.cron_name)
        provisioner = Provisioner(
            self.ledger,
            self.payer,
            report,
            max_attempts=self._max_attempts,
            backoff_seconds=self._backoff_seconds,
        )
        registrar = Registrar(self.broker, provisioner, self.programs.cron)

        logger.info(f"Scheduling '{request.cron_name}' on queue '{request.queue_name}'")
        try:
            queue = registrar.resolve_queue(request.queue_name)
            addrs = derive_addresses(self.programs, self.payer, queue.address, request.context_index)
            report.addresses.update(addrs)

            self._ensure_queue_authority(provisioner, addrs)
            self._ensure_context(provisioner, addrs, request)

            job = registrar.ensure_job(
                request.cron_name,
                request.schedule,
                request.job_config,
                queue,
                authority=self.payer,
                funding_lamports=request.funding_lamports,
            )
            report.addresses["cron_job"] = job.address

            compiled = self.compile_interaction(addrs, request.interaction_text)
            slot = registrar.ensure_slot(job, 0, compiled)
            report.addresses["cron_job_transaction"] = slot
            report.slots.append(0)

            if request.delegate:
                self._delegate_interaction(provisioner, addrs, request)

        except (PermanentError, TransientError) as e:
            self._halt(report, e)

        logger.info(
            f"'{request.cron_name}' scheduled: {len(report.created)} created, "
            f"{len(report.existing)} already present"
        )
        return report

    def queue_interaction(
        self,
        queue_name: str,
        task_id: int,
        text: str,
        context_index: int = 0,
        crank_reward: int = TASK_CRANK_REWARD,
        free_tasks: int = TASK_FREE_TASKS,
        description: str = TASK_DESCRIPTION,
    ) -> ProvisioningReport:
        """
        Queue interact_with_llm once, for immediate execution.

        The oracle program's queue authority (a program address signing with
        its seeds) queues the task, and the task itself pays for the
        interaction record: the payer transfers that rent to the task
        address after queueing.

        Returns:
            Report with the task address under addresses["task"]

        Raises:
            PipelineHalted: If a step was rejected or a prerequisite is missing
            SlotOccupied: If the task id is taken on the queue
        """
        addresses.u16_seed(task_id)

        report = ProvisioningReport(job=f"task:{queue_name}/{task_id}")
        provisioner = Provisioner(
            self.ledger,
            self.payer,
            report,
            max_attempts=self._max_attempts,
            backoff_seconds=self._backoff_seconds,
        )
        registrar = Registrar(self.broker, provisioner, self.programs.cron)

        try:
            queue = registrar.resolve_queue(queue_name)
            addrs = derive_addresses(self.programs, self.payer, queue.address, context_index)
            queue_authority = addresses.queue_authority_key(self.programs.oracle)
            grant = addresses.task_queue_authority_key(queue.address, queue_authority, self.programs.tuktuk)
            task = addresses.task_key(queue.address, task_id, self.programs.tuktuk)
            report.addresses.update(addrs)
            report.addresses.update({"queue_authority": queue_authority, "program_queue_authority": grant})

            provisioner.ensure_account(
                "program-queue-authority",
                "authority",
                grant,
                lambda: [ixs.add_queue_authority_ix(
                    self.programs.tuktuk,
                    payer=self.payer,
                    update_authority=self.payer,
                    queue_authority=queue_authority,
                    task_queue_authority=grant,
                    task_queue=queue.address,
                )],
            )

            record = registrar.queue_task(
                queue,
                queue_authority,
                task_id,
                self.compile_interaction(addrs, text, payer=task),
                crank_reward=crank_reward,
                free_tasks=free_tasks,
                description=description,
                funding_lamports=ixs.interaction_rent(text),
                authority_seeds=addresses.queue_authority_signer_seeds(self.programs.oracle),
                authority_program=self.programs.oracle,
            )
            report.addresses["task"] = record.address

        except (PermanentError, TransientError) as e:
            self._halt(report, e)

        return report

    def _halt(self, report: ProvisioningReport, error: Exception) -> None:
        report.halted = True
        report.error = str(error)
        logger.error(f"Pipeline halted: {error}")
        raise PipelineHalted(f"Pipeline halted: {error}", report) from error

    def compile_interaction(
        self,
        addrs: dict[str, Pubkey],
        text: str,
        payer: Optional[Pubkey] = None,
    ) -> CompiledTransaction:
        """
        Compile the interact_with_llm call the broker replays.

        The payer defaults to the wallet; a one-shot task pays for itself.
        """
        ix = ixs.interact_with_llm_ix(
            self.programs.oracle,
            payer=payer or self.payer,
            interaction=addrs["interaction"],
            context_account=addrs["context"],
            text=text,
            callback_program=self.programs.oracle,
        )
        return self.compiler.compile([ix])

    def _ensure_queue_authority(self, provisioner: Provisioner, addrs: dict[str, Pubkey]) -> None:
        provisioner.ensure_account(
            "queue-authority",
            "authority",
            addrs["task_queue_authority"],
            lambda: [ixs.add_queue_authority_ix(
                self.programs.tuktuk,
                payer=self.payer,
                update_authority=self.payer,
                queue_authority=self.payer,
                task_queue_authority=addrs["task_queue_authority"],
                task_queue=addrs["task_queue"],
            )],
        )

    def _ensure_context(self, provisioner: Provisioner, addrs: dict[str, Pubkey], request: ScheduleRequest) -> None:
        def build():
            count = read_counter(self.ledger, addrs["counter"])
            if count != request.context_index:
                raise NotFound(
                    f"Context {request.context_index} does not exist and cannot be "
                    f"created (counter is at {count})"
                )
            return [ixs.create_llm_context_ix(
                self.programs.oracle,
                payer=self.payer,
                counter=addrs["counter"],
                context_account=addrs["context"],
                text=request.context_text,
            )]

        provisioner.ensure_account("context", "context", addrs["context"], build)

    def _delegate_interaction(
        self,
        provisioner: Provisioner,
        addrs: dict[str, Pubkey],
        request: ScheduleRequest,
    ) -> DelegationHandle:
        if self.ephemeral_domain is None:
            raise ValueError("Delegation requested without an ephemeral domain")

        # Delegation needs an existing record; the first interaction creates it
        provisioner.ensure_account(
            "interaction",
            "interaction",
            addrs["interaction"],
            lambda: [ixs.interact_with_llm_ix(
                self.programs.oracle,
                payer=self.payer,
                interaction=addrs["interaction"],
                context_account=addrs["context"],
                text=request.interaction_text,
                callback_program=self.programs.oracle,
            )],
        )

        coordinator = DelegationCoordinator(
            self.ledger,
            self.payer,
            owner_program=self.programs.oracle,
            delegation_program=self.programs.delegation,
            build_instructions=lambda resource: [ixs.delegate_interaction_ix(
                self.programs.oracle,
                payer=self.payer,
                interaction=resource,
                context_account=addrs["context"],
                delegation_program=self.programs.delegation,
            )],
            report=provisioner.report,
        )
        return coordinator.ensure_delegated(addrs["interaction"], self.ephemeral_domain)


def run_schedule(
    ledger: Ledger,
    broker: TaskBroker,
    config: TukcronConfig,
    delegate: bool = False,
) -> ProvisioningReport:
    """
    Convenience function to run the pipeline from a loaded config.

    Args:
        ledger: Primary-domain ledger
        broker: Task broker
        config: Loaded configuration
        delegate: Also delegate the interaction record

    Returns:
        ProvisioningReport
    """
    pipeline = SchedulePipeline(
        ledger,
        broker,
        payer=config.wallet_pubkey(),
        programs=config.program_ids(),
        ephemeral_domain=ExecutionDomain(
            name="ephemeral",
            endpoint=config.ephemeral_rpc_url,
            ws_endpoint=config.ephemeral_ws_url,
        ),
        max_attempts=config.retry.get("max_attempts", 3),
        backoff_seconds=config.retry.get("backoff_seconds", 0.5),
    )
    return pipeline.run(ScheduleRequest.from_config(config, delegate=delegate))
