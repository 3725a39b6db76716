"""
Broker-side schemas - task queues, recurring jobs and one-shot tasks.

QueueHandle: A capacity-limited task queue registered with the broker.
ScheduledJob: A named recurring job holding compiled transactions in slots.
TaskRecord: A one-shot task queued for immediate execution.
"""

import re
from dataclasses import dataclass, field
from typing import Any, Optional

from solders.pubkey import Pubkey

from .compiled import CompiledTransaction


# One field of a cron expression: *, */n, a, a-b, a-b/n, comma lists, names
_CRON_FIELD = re.compile(r"^(\*|\?|[0-9A-Za-z]+(-[0-9A-Za-z]+)?)(/[0-9]+)?(,(\*|[0-9A-Za-z]+(-[0-9A-Za-z]+)?)(/[0-9]+)?)*$")


def validate_schedule(schedule: str) -> str:
    """
    Validate the shape of a cron expression.

    Accepts 5 (minute precision), 6 (leading seconds field) or 7 (trailing
    year field) whitespace-separated fields.

    Returns:
        The expression with fields joined by single spaces

    Raises:
        ValueError: If the expression is malformed
    """
    fields = schedule.split()
    if len(fields) not in (5, 6, 7):
        raise ValueError(
            f"Cron schedule must have 5, 6 or 7 fields, got {len(fields)}: {schedule!r}"
        )
    for f in fields:
        if not _CRON_FIELD.match(f):
            raise ValueError(f"Invalid cron field {f!r} in schedule {schedule!r}")
    return " ".join(fields)


@dataclass(frozen=True)
class JobConfig:
    """
    Per-invocation limits for a recurring job.

    Attributes:
        free_slots_per_invocation: Tasks queued per invocation without paying
            the crank fee
        slots_per_invocation: Transactions queued per invocation
    """
    free_slots_per_invocation: int = 0
    slots_per_invocation: int = 1

    def __post_init__(self):
        if self.free_slots_per_invocation < 0:
            raise ValueError("free_slots_per_invocation must be >= 0")
        if self.slots_per_invocation < 1:
            raise ValueError("slots_per_invocation must be >= 1")

    def to_dict(self) -> dict[str, Any]:
        return {
            "free_slots_per_invocation": self.free_slots_per_invocation,
            "slots_per_invocation": self.slots_per_invocation,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "JobConfig":
        return cls(
            free_slots_per_invocation=data.get("free_slots_per_invocation", 0),
            slots_per_invocation=data.get("slots_per_invocation", 1),
        )


@dataclass(frozen=True)
class QueueHandle:
    """A task queue known to the broker."""
    name: str
    address: Pubkey
    queue_id: int
    capacity: int = 10
    min_crank_reward: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "address": str(self.address),
            "queue_id": self.queue_id,
            "capacity": self.capacity,
            "min_crank_reward": self.min_crank_reward,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "QueueHandle":
        return cls(
            name=data["name"],
            address=Pubkey.from_string(data["address"]),
            queue_id=data["queue_id"],
            capacity=data.get("capacity", 10),
            min_crank_reward=data.get("min_crank_reward", 0),
        )


@dataclass
class ScheduledJob:
    """
    A named recurring job.

    The broker re-submits each slot's compiled transaction according to
    `schedule` until the slot or the job is closed by an operator.

    Attributes:
        name: Unique job name (per authority)
        schedule: Cron expression
        address: Derived job address
        authority: Owner of the job
        queue: Address of the task queue the job feeds
        job_id: Per-authority sequence number used in the address seeds
        config: Per-invocation limits
        slots: Compiled transactions by slot index
    """
    name: str
    schedule: str
    address: Pubkey
    authority: Pubkey
    queue: Pubkey
    job_id: int = 0
    config: JobConfig = field(default_factory=JobConfig)
    slots: dict[int, CompiledTransaction] = field(default_factory=dict)

    @property
    def free_slots_per_invocation(self) -> int:
        return self.config.free_slots_per_invocation

    @property
    def slots_per_invocation(self) -> int:
        return self.config.slots_per_invocation

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "schedule": self.schedule,
            "address": str(self.address),
            "authority": str(self.authority),
            "queue": str(self.queue),
            "job_id": self.job_id,
            "config": self.config.to_dict(),
            "slots": {str(index): tx.to_dict() for index, tx in sorted(self.slots.items())},
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ScheduledJob":
        return cls(
            name=data["name"],
            schedule=data["schedule"],
            address=Pubkey.from_string(data["address"]),
            authority=Pubkey.from_string(data["authority"]),
            queue=Pubkey.from_string(data["queue"]),
            job_id=data.get("job_id", 0),
            config=JobConfig.from_dict(data.get("config", {})),
            slots={
                int(index): CompiledTransaction.from_dict(tx)
                for index, tx in data.get("slots", {}).items()
            },
        )


@dataclass(frozen=True)
class TaskRecord:
    """
    A one-shot task queued on a task queue.

    Attributes:
        queue: Task queue address
        task_id: Task id within the queue (u16)
        address: Derived task address
        transaction: Compiled transaction to run
        crank_reward: Reward paid to the cranker, None for the queue default
        free_tasks: Follow-up tasks the transaction may queue for free
        description: Operator-facing description
        trigger: When to run ("now" is the only trigger issued here)
        queue_authority: Authority the task was queued under
    """
    queue: Pubkey
    task_id: int
    address: Pubkey
    transaction: CompiledTransaction
    crank_reward: Optional[int] = None
    free_tasks: int = 0
    description: str = ""
    trigger: str = "now"
    queue_authority: Optional[Pubkey] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "queue": str(self.queue),
            "task_id": self.task_id,
            "address": str(self.address),
            "transaction": self.transaction.to_dict(),
            "crank_reward": self.crank_reward,
            "free_tasks": self.free_tasks,
            "description": self.description,
            "trigger": self.trigger,
            "queue_authority": str(self.queue_authority) if self.queue_authority is not None else None,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "TaskRecord":
        return cls(
            queue=Pubkey.from_string(data["queue"]),
            task_id=data["task_id"],
            address=Pubkey.from_string(data["address"]),
            transaction=CompiledTransaction.from_dict(data["transaction"]),
            crank_reward=data.get("crank_reward"),
            free_tasks=data.get("free_tasks", 0),
            description=data.get("description", ""),
            trigger=data.get("trigger", "now"),
            queue_authority=Pubkey.from_string(data["queue_authority"]) if data.get("queue_authority") else None,
        )
