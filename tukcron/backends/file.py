"""
File-backed ledger and broker for local simulation.

Both collaborators share one JSON state file:

    state.json
        {
            "ledger": {"slot": 12, "accounts": {"<address>": {...}}},
            "broker": {"queues": [...], "jobs": [...], "tasks": [...], ...}
        }

Each instance rewrites its own section after every accepted change, so a
second CLI invocation sees what the first one created. A StateFile opened
with persist=False reads the file but never writes it (dry runs).
"""

import json
import logging
from pathlib import Path
from typing import Any, Optional

from solders.pubkey import Pubkey

from tukcron.schemas import AccountInfo, QueueHandle, ScheduledJob, TaskRecord

from .base import Ledger
from .memory import InMemoryBroker, InMemoryLedger, ProgramHandler


logger = logging.getLogger(__name__)


class StateFile:
    """JSON state file split into named sections."""

    def __init__(self, path: Path | str, persist: bool = True):
        self.path = Path(path)
        self.persist = persist

    def load(self) -> dict[str, Any]:
        if not self.path.exists():
            return {}
        with open(self.path) as f:
            return json.load(f)

    def section(self, name: str) -> dict[str, Any]:
        return self.load().get(name, {})

    def write_section(self, name: str, data: dict[str, Any]) -> None:
        if not self.persist:
            return
        state = self.load()
        state[name] = data
        self.path.parent.mkdir(parents=True, exist_ok=True)
        with open(self.path, "w") as f:
            json.dump(state, f, indent=2, sort_keys=True)
        logger.debug(f"Wrote '{name}' section to {self.path}")


class FileLedger(InMemoryLedger):
    """InMemoryLedger whose accounts survive across processes."""

    SECTION = "ledger"

    def __init__(
        self,
        state: StateFile,
        handlers: Optional[dict[Pubkey, ProgramHandler]] = None,
        upstream: Optional[Ledger] = None,
        section: str = SECTION,
    ):
        super().__init__(handlers=handlers, upstream=upstream)
        self._state = state
        self._section = section

        data = state.section(section)
        self._slot = data.get("slot", 0)
        for address, info in data.get("accounts", {}).items():
            self._accounts[Pubkey.from_string(address)] = AccountInfo.from_dict(info)

    def _on_change(self) -> None:
        self._state.write_section(self._section, {
            "slot": self._slot,
            "accounts": {str(a): info.to_dict() for a, info in self._accounts.items()},
        })


class FileBroker(InMemoryBroker):
    """InMemoryBroker whose queues, jobs and tasks survive across processes."""

    SECTION = "broker"

    def __init__(
        self,
        state: StateFile,
        tuktuk_program: Pubkey,
        cron_program: Pubkey,
        ledger: Optional[Ledger] = None,
    ):
        super().__init__(tuktuk_program, cron_program, ledger=ledger)
        self._state = state

        data = state.section(self.SECTION)
        for q in data.get("queues", []):
            queue = QueueHandle.from_dict(q)
            self._queues[queue.name] = queue
        self._next_queue_id = data.get("next_queue_id", 0)

        for j in data.get("jobs", []):
            job = ScheduledJob.from_dict(j)
            self._jobs[self.job_key(job.name, job.authority)] = job
        self._next_job_id = {
            Pubkey.from_string(a): n for a, n in data.get("next_job_id", {}).items()
        }

        for t in data.get("tasks", []):
            task = TaskRecord.from_dict(t)
            self._tasks[(task.queue, task.task_id)] = task

    def _on_change(self) -> None:
        self._state.write_section(self.SECTION, {
            "queues": [q.to_dict() for q in self._queues.values()],
            "next_queue_id": self._next_queue_id,
            "jobs": [j.to_dict() for j in self._jobs.values()],
            "next_job_id": {str(a): n for a, n in self._next_job_id.items()},
            "tasks": [t.to_dict() for t in self._tasks.values()],
        })
