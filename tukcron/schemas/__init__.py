"""
tukcron.schemas - Data structures for the provisioning and scheduling core.

Lifecycle of one scheduling run:
1. Addresses derived for every resource (authority grant, job, slot, context)
2. ProvisionableResource per resource: UNKNOWN -> ABSENT|PRESENT -> PROVISIONED
3. CompiledTransaction: instructions packed against a deduplicated account table
4. ScheduledJob: recurring job holding the compiled transaction at slot 0
5. DelegationHandle: optional hand-off to an ephemeral execution domain
6. ProvisioningReport: created / exists / failed per decision

Boundaries:
- tukcron: orchestration (what to create, in which order, how to package it)
- ledger: account state and instruction execution (external)
- broker: queues, recurring jobs and one-shot tasks (external)
"""

from .accounts import AccountInfo, AccountRef, Receipt
from .compiled import CompiledInstruction, CompiledTransaction, CompileError
from .jobs import JobConfig, QueueHandle, ScheduledJob, TaskRecord, validate_schedule
from .resources import ProvisionableResource, ResourceState
from .report import Outcome, ProvisioningReport, ReportEntry
from .delegation import DelegationHandle, DelegationState, ExecutionDomain

__all__ = [
    # Accounts
    "AccountInfo",
    "AccountRef",
    "Receipt",
    # Compiled transactions
    "CompiledInstruction",
    "CompiledTransaction",
    "CompileError",
    # Broker records
    "JobConfig",
    "QueueHandle",
    "ScheduledJob",
    "TaskRecord",
    "validate_schedule",
    # Provisioning
    "ProvisionableResource",
    "ResourceState",
    "Outcome",
    "ProvisioningReport",
    "ReportEntry",
    # Delegation
    "DelegationHandle",
    "DelegationState",
    "ExecutionDomain",
]
