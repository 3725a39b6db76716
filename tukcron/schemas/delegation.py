"""
Delegation schemas - execution domains and delegation handles.

A resource is processed by the primary domain until its mutation authority
is handed to an alternate (ephemeral, low-latency) domain. The transition
is one-way in this core:

    UNDELEGATED -> DELEGATED
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional

from solders.pubkey import Pubkey


class DelegationState(str, Enum):
    UNDELEGATED = "undelegated"
    DELEGATED = "delegated"


@dataclass(frozen=True)
class ExecutionDomain:
    """
    An execution domain reachable over RPC.

    Attributes:
        name: Domain name used for routing ("primary", "ephemeral")
        endpoint: HTTP RPC endpoint
        ws_endpoint: Optional websocket endpoint
    """
    name: str
    endpoint: str
    ws_endpoint: Optional[str] = None


@dataclass(frozen=True)
class DelegationHandle:
    """
    Record of a resource's authority transfer to an alternate domain.

    Attributes:
        resource: Address of the delegated resource
        domain: Domain that now processes the resource
        state: Delegation state
        signature: Signature of the delegation submission, None when the
            handle was reconstructed from ledger state
    """
    resource: Pubkey
    domain: ExecutionDomain
    state: DelegationState = DelegationState.DELEGATED
    signature: Optional[str] = None

    @property
    def active(self) -> bool:
        return self.state == DelegationState.DELEGATED

    def to_dict(self) -> dict[str, Any]:
        return {
            "resource": str(self.resource),
            "domain": self.domain.name,
            "endpoint": self.domain.endpoint,
            "state": self.state.value,
            "signature": self.signature,
        }
