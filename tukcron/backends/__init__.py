"""
Backends for the external ledger and broker.

- base: Ledger and TaskBroker protocols
- memory: in-memory simulation (tests, dry runs)
- file: the same simulation persisted to a JSON state file
"""

from .base import Ledger, TaskBroker
from .memory import (
    AccountView,
    InMemoryBroker,
    InMemoryLedger,
    OracleProgramSimulator,
    generic_init_handler,
    rent_exempt_minimum,
    system_transfer_handler,
)
from .file import FileBroker, FileLedger, StateFile

__all__ = [
    "Ledger",
    "TaskBroker",
    "AccountView",
    "InMemoryLedger",
    "InMemoryBroker",
    "OracleProgramSimulator",
    "generic_init_handler",
    "rent_exempt_minimum",
    "system_transfer_handler",
    "StateFile",
    "FileLedger",
    "FileBroker",
]
