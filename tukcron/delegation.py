"""
Delegation - hand a resource's mutation authority to an ephemeral domain.

The coordinator acts for one owner program. Before issuing the owner
program's delegate instruction it checks the resource on the primary ledger:
- absent: NotFound (delegation needs an existing account)
- owned by the delegation program: AlreadyDelegated
- owned by any other program: AuthorityMismatch

After delegation, operations that touch the resource must be submitted to
the ephemeral domain; ExecutionRouter makes that choice. Compiled recurring
jobs keep targeting the domain they were compiled for and are not re-routed.
"""

import logging
from typing import Callable, Optional, Sequence

from solders.instruction import Instruction
from solders.pubkey import Pubkey

from tukcron.backends.base import Ledger
from tukcron.errors import AlreadyDelegated, AuthorityMismatch, NotFound
from tukcron.schemas import (
    DelegationHandle,
    ExecutionDomain,
    Outcome,
    ProvisioningReport,
    Receipt,
)


logger = logging.getLogger(__name__)


class DelegationCoordinator:
    """Delegates resources owned by one program."""

    def __init__(
        self,
        ledger: Ledger,
        payer: Pubkey,
        owner_program: Pubkey,
        delegation_program: Pubkey,
        build_instructions: Callable[[Pubkey], Sequence[Instruction]],
        report: Optional[ProvisioningReport] = None,
    ):
        """
        Args:
            ledger: Primary-domain ledger
            payer: Signer of the delegate submission
            owner_program: Program that owns the resources being delegated
            delegation_program: Program that holds delegated resources
            build_instructions: Builds the delegate instructions for a resource
            report: Report to record delegation decisions in
        """
        self.ledger = ledger
        self.payer = payer
        self.owner_program = owner_program
        self.delegation_program = delegation_program
        self._build_instructions = build_instructions
        self.report = report if report is not None else ProvisioningReport()
        self.handles: dict[Pubkey, DelegationHandle] = {}

    def delegate(self, resource: Pubkey, domain: ExecutionDomain) -> DelegationHandle:
        """
        Delegate a resource to an execution domain.

        Returns:
            Handle for the active delegation

        Raises:
            NotFound: If the resource does not exist
            AlreadyDelegated: If the resource is already delegated
            AuthorityMismatch: If the resource is not owned by owner_program
            Rejected: If the ledger refuses the delegate submission
        """
        info = self.ledger.get_account(resource)
        if info is None:
            raise NotFound(f"Cannot delegate {resource}: account does not exist")
        if info.owner == self.delegation_program:
            raise AlreadyDelegated(f"{resource} is already delegated")
        if info.owner != self.owner_program:
            raise AuthorityMismatch(
                f"{resource} is owned by {info.owner}, not {self.owner_program}"
            )

        receipt = self.ledger.submit(self._build_instructions(resource), signer=self.payer)
        handle = DelegationHandle(resource=resource, domain=domain, signature=receipt.signature)
        self.handles[resource] = handle
        logger.info(f"Delegated {resource} to {domain.name} ({domain.endpoint})")
        self.report.record(f"delegation:{resource}", "delegation", Outcome.CREATED, resource, domain.name)
        return handle

    def ensure_delegated(self, resource: Pubkey, domain: ExecutionDomain) -> DelegationHandle:
        """delegate, with an existing delegation reported as EXISTS."""
        try:
            return self.delegate(resource, domain)
        except AlreadyDelegated:
            logger.info(f"{resource} already delegated, skipping")
            handle = DelegationHandle(resource=resource, domain=domain)
            self.handles[resource] = handle
            self.report.record(f"delegation:{resource}", "delegation", Outcome.EXISTS, resource, domain.name)
            return handle


class ExecutionRouter:
    """
    Routes submissions to the domain currently processing a resource.

    A resource is considered delegated when a handle was registered for it
    or when the primary ledger shows it owned by the delegation program.
    """

    def __init__(
        self,
        primary: Ledger,
        ephemeral: Ledger,
        delegation_program: Pubkey,
        primary_domain: ExecutionDomain,
        ephemeral_domain: ExecutionDomain,
    ):
        self.primary = primary
        self.ephemeral = ephemeral
        self.delegation_program = delegation_program
        self.primary_domain = primary_domain
        self.ephemeral_domain = ephemeral_domain
        self._handles: dict[Pubkey, DelegationHandle] = {}

    def register(self, handle: DelegationHandle) -> None:
        self._handles[handle.resource] = handle

    def is_delegated(self, resource: Pubkey) -> bool:
        handle = self._handles.get(resource)
        if handle is not None and handle.active:
            return True
        info = self.primary.get_account(resource)
        return info is not None and info.owner == self.delegation_program

    def domain_for(self, resource: Pubkey) -> ExecutionDomain:
        return self.ephemeral_domain if self.is_delegated(resource) else self.primary_domain

    def ledger_for(self, resource: Pubkey) -> Ledger:
        return self.ephemeral if self.is_delegated(resource) else self.primary

    def submit(self, resource: Pubkey, instructions: Sequence[Instruction], signer: Pubkey) -> Receipt:
        """Submit instructions touching `resource` to the domain processing it."""
        domain = self.domain_for(resource)
        logger.debug(f"Routing submission for {resource} to {domain.name}")
        return self.ledger_for(resource).submit(instructions, signer=signer)
