"""
Provisioning report - what a pipeline run did, per resource.

Every provisioning decision is recorded distinctly so a re-run's behaviour
is predictable from the previous report:
- CREATED: this run created (and, if required, funded) the resource
- EXISTS: the resource was already there; nothing was issued
- FAILED: the store rejected the creation; the pipeline halted here
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional

from solders.pubkey import Pubkey


class Outcome(str, Enum):
    """Outcome of one provisioning decision."""
    CREATED = "created"
    EXISTS = "exists"
    FAILED = "failed"


@dataclass(frozen=True)
class ReportEntry:
    """One provisioning decision."""
    name: str
    kind: str
    outcome: Outcome
    address: Optional[Pubkey] = None
    detail: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "kind": self.kind,
            "outcome": self.outcome.value,
            "address": str(self.address) if self.address is not None else None,
            "detail": self.detail,
        }


@dataclass
class ProvisioningReport:
    """
    Accumulated report for one pipeline run.

    Attributes:
        entries: Decisions in the order they were made
        addresses: Final derived addresses by role
        job: Name of the scheduled job, once known
        slots: Slot indices attached or found on the job
        halted: True when a step failed and later steps were not reached
        error: Failure message when halted
    """
    entries: list[ReportEntry] = field(default_factory=list)
    addresses: dict[str, Pubkey] = field(default_factory=dict)
    job: Optional[str] = None
    slots: list[int] = field(default_factory=list)
    halted: bool = False
    error: Optional[str] = None

    def record(
        self,
        name: str,
        kind: str,
        outcome: Outcome,
        address: Optional[Pubkey] = None,
        detail: str = "",
    ) -> ReportEntry:
        entry = ReportEntry(name=name, kind=kind, outcome=outcome, address=address, detail=detail)
        self.entries.append(entry)
        return entry

    def get(self, name: str) -> Optional[ReportEntry]:
        """Get the last entry recorded for a resource name."""
        for entry in reversed(self.entries):
            if entry.name == name:
                return entry
        return None

    def by_outcome(self, outcome: Outcome) -> list[ReportEntry]:
        return [e for e in self.entries if e.outcome == outcome]

    @property
    def created(self) -> list[ReportEntry]:
        return self.by_outcome(Outcome.CREATED)

    @property
    def existing(self) -> list[ReportEntry]:
        return self.by_outcome(Outcome.EXISTS)

    @property
    def failed(self) -> list[ReportEntry]:
        return self.by_outcome(Outcome.FAILED)

    def to_dict(self) -> dict[str, Any]:
        return {
            "entries": [e.to_dict() for e in self.entries],
            "addresses": {role: str(addr) for role, addr in self.addresses.items()},
            "job": self.job,
            "slots": list(self.slots),
            "halted": self.halted,
            "error": self.error,
        }
