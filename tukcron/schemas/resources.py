"""
Provisionable resource schema and its lifecycle.

Lifecycle:
    UNKNOWN -> ABSENT | PRESENT      (existence check)
    ABSENT  -> PROVISIONED | FAILED  (creation attempt)

PRESENT and PROVISIONED are both "exists" end states; the difference is
whether this run created the resource. Existence is always checked before
creation is attempted.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional

from solders.pubkey import Pubkey


class ResourceState(str, Enum):
    """Lifecycle state of a provisionable resource."""
    UNKNOWN = "unknown"
    ABSENT = "absent"
    PRESENT = "present"
    PROVISIONED = "provisioned"
    FAILED = "failed"


_TRANSITIONS: dict[ResourceState, frozenset[ResourceState]] = {
    ResourceState.UNKNOWN: frozenset({ResourceState.ABSENT, ResourceState.PRESENT}),
    ResourceState.ABSENT: frozenset({ResourceState.PROVISIONED, ResourceState.FAILED}),
    ResourceState.PRESENT: frozenset(),
    ResourceState.PROVISIONED: frozenset(),
    ResourceState.FAILED: frozenset(),
}


@dataclass
class ProvisionableResource:
    """
    A named resource brought into existence by the provisioner.

    Attributes:
        name: Operator-facing name (e.g., "queue-authority", "job:hourly-ping")
        kind: Resource family (authority, job, context, interaction, ...)
        address: Derived address, None until known (broker-created records
            report theirs after lookup or creation)
        state: Current lifecycle state
        required_balance: Lamports to transfer right after creation, if any
        funded: Whether the funding transfer was issued by this run
        handle: Backend object returned by the lookup or creation call
    """
    name: str
    kind: str
    address: Optional[Pubkey] = None
    state: ResourceState = ResourceState.UNKNOWN
    required_balance: Optional[int] = None
    funded: bool = False
    handle: Any = None

    @property
    def exists(self) -> bool:
        return self.state in (ResourceState.PRESENT, ResourceState.PROVISIONED)

    def transition(self, new_state: ResourceState) -> None:
        """
        Move to a new lifecycle state.

        Raises:
            ValueError: If the transition is not allowed
        """
        if new_state not in _TRANSITIONS[self.state]:
            raise ValueError(
                f"Resource '{self.name}': illegal transition "
                f"{self.state.value} -> {new_state.value}"
            )
        self.state = new_state
