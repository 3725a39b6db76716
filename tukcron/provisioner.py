"""
Provisioner - check-then-create lifecycle for external resources.

For each resource, in the order the caller asks for them:
1. Query existence (retried on TransientError)
2. Present: skip creation and funding, log an informational no-op
3. Absent: issue the creation, then fund it with a system transfer from the
   payer when a required balance is given, before returning to the caller
   (so no dependent resource is touched before its parent is funded)

Every decision lands in the ProvisioningReport as CREATED, EXISTS or FAILED.
A Rejected creation or funding marks the resource FAILED and propagates;
there is no rollback, and a re-run picks up where the failed run stopped.
"""

import logging
from typing import Any, Callable, Optional, Sequence

from solders.instruction import Instruction
from solders.pubkey import Pubkey

from tukcron.backends.base import Ledger
from tukcron.errors import NotFound, Rejected
from tukcron.instructions import decode_counter, transfer_ix
from tukcron.schemas import (
    Outcome,
    ProvisionableResource,
    ProvisioningReport,
    Receipt,
    ResourceState,
)
from tukcron.utils import retry_with_backoff


logger = logging.getLogger(__name__)


class Provisioner:
    """
    Brings resources into existence exactly once.

    Usage:
        provisioner = Provisioner(ledger, payer=wallet)
        provisioner.ensure_account(
            "queue-authority", "authority", grant_address,
            lambda: [add_queue_authority_ix(...)],
        )
        provisioner.report.created  # what this run did
    """

    def __init__(
        self,
        ledger: Ledger,
        payer: Pubkey,
        report: Optional[ProvisioningReport] = None,
        max_attempts: int = 3,
        backoff_seconds: float = 0.5,
    ):
        """
        Initialize the provisioner.

        Args:
            ledger: Ledger used for existence checks and submissions
            payer: Signer paying for creations and funding transfers
            report: Report to append to (a fresh one by default)
            max_attempts: Attempts for existence checks on TransientError
            backoff_seconds: Initial retry backoff
        """
        self.ledger = ledger
        self.payer = payer
        self.report = report if report is not None else ProvisioningReport()
        self._max_attempts = max_attempts
        self._backoff_seconds = backoff_seconds

    def ensure(
        self,
        name: str,
        kind: str,
        lookup: Callable[[], Any],
        create: Callable[[], Any],
        address: Optional[Pubkey] = None,
        address_of: Optional[Callable[[Any], Pubkey]] = None,
        required_balance: Optional[int] = None,
    ) -> ProvisionableResource:
        """
        Ensure a resource exists.

        Args:
            name: Operator-facing resource name
            kind: Resource family
            lookup: Returns the existing resource, or None when absent
            create: Creates the resource and returns its handle
            address: Known address (derived up front)
            address_of: Extracts the address from a handle when it is only
                known after lookup or creation
            required_balance: Lamports to transfer right after creation

        Returns:
            The resource in PRESENT or PROVISIONED state

        Raises:
            Rejected: If creation or funding is refused (resource FAILED)
            NotFound: If a prerequisite of the creation is missing
                (resource FAILED)
        """
        resource = ProvisionableResource(
            name=name,
            kind=kind,
            address=address,
            required_balance=required_balance,
        )

        existing = retry_with_backoff(
            lookup,
            max_attempts=self._max_attempts,
            backoff_seconds=self._backoff_seconds,
            logger=logger,
        )

        if existing is not None:
            resource.transition(ResourceState.PRESENT)
            resource.handle = existing
            if resource.address is None and address_of is not None:
                resource.address = address_of(existing)
            logger.info(f"{name} already exists at {resource.address}, skipping")
            self.report.record(name, kind, Outcome.EXISTS, resource.address)
            return resource

        resource.transition(ResourceState.ABSENT)
        logger.info(f"Creating {kind} {name}...")

        try:
            resource.handle = create()
            if resource.address is None and address_of is not None:
                resource.address = address_of(resource.handle)

            if required_balance:
                logger.info(f"Funding {name} with {required_balance} lamports")
                self.fund(resource.address, required_balance)
                resource.funded = True

        except (Rejected, NotFound) as e:
            resource.transition(ResourceState.FAILED)
            detail = str(e)
            if resource.handle is not None:
                detail = f"created but funding failed: {e}"
            logger.error(f"Failed to provision {name}: {detail}")
            self.report.record(name, kind, Outcome.FAILED, resource.address, detail)
            raise

        resource.transition(ResourceState.PROVISIONED)
        detail = f"funded {required_balance} lamports" if resource.funded else ""
        logger.info(f"{name} created at {resource.address}")
        self.report.record(name, kind, Outcome.CREATED, resource.address, detail)
        return resource

    def ensure_account(
        self,
        name: str,
        kind: str,
        address: Pubkey,
        build_instructions: Callable[[], Sequence[Instruction]],
        required_balance: Optional[int] = None,
    ) -> ProvisionableResource:
        """
        Ensure a ledger account exists at a derived address.

        Existence is the presence of any account at `address`; creation
        submits the built instructions signed by the payer.
        """
        return self.ensure(
            name,
            kind,
            lookup=lambda: self.ledger.get_account(address),
            create=lambda: self.ledger.submit(build_instructions(), signer=self.payer),
            address=address,
            required_balance=required_balance,
        )

    def fund(self, address: Pubkey, lamports: int) -> Receipt:
        """Transfer lamports from the payer to a freshly created resource."""
        return self.ledger.submit([transfer_ix(self.payer, address, lamports)], signer=self.payer)


def read_counter(ledger: Ledger, counter: Pubkey) -> int:
    """
    Read the current value of an oracle counter account.

    Used for read-then-derive addresses whose seed is the counter value.

    Raises:
        NotFound: If the counter account does not exist
        PermanentError: If the account is not a counter
    """
    info = ledger.get_account(counter)
    if info is None:
        raise NotFound(f"Counter account {counter} not found")
    return decode_counter(info.data)
