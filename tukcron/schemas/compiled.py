"""
Compiled transaction schema - the queue-submittable artifact.

A CompiledTransaction packs a batch of instructions into a relocatable form:
accounts live once in a shared table and instructions reference them by
index. The broker stores it in a job slot (or a one-shot task) and replays
it later without re-resolving account lists.

Invariants (checked on construction):
- every index referenced by an instruction is valid in `accounts`
- `accounts` holds no duplicate (pubkey, is_signer, is_writable) entry

Serialization:
- to_dict(): JSON-friendly dict (base58 pubkeys, base64 data)
- to_bytes(): canonical JSON bytes (sorted keys, no whitespace)
- digest: "sha256:<hex>" of the canonical form
"""

import base64
import hashlib
import json
from dataclasses import dataclass, field
from typing import Any

from solders.instruction import AccountMeta

from .accounts import AccountRef


class CompileError(Exception):
    """Raised when instructions cannot be compiled or a compiled form is invalid."""
    pass


def _hash_canonical(data: dict) -> str:
    """
    Compute canonical hash of a dictionary.

    Uses JSON serialization with sorted keys for determinism.
    """
    canonical = json.dumps(data, sort_keys=True, separators=(",", ":"))
    digest = hashlib.sha256(canonical.encode()).hexdigest()
    return f"sha256:{digest}"


@dataclass(frozen=True)
class CompiledInstruction:
    """
    One instruction with accounts replaced by account-table indices.

    Attributes:
        program_id_index: Index of the target program in the account table
        accounts: Ordered account-table indices, in the instruction's own order
        data: Opaque instruction payload
    """
    program_id_index: int
    accounts: tuple[int, ...] = ()
    data: bytes = b""

    def to_dict(self) -> dict[str, Any]:
        return {
            "program_id_index": self.program_id_index,
            "accounts": list(self.accounts),
            "data": base64.b64encode(self.data).decode("ascii"),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "CompiledInstruction":
        return cls(
            program_id_index=data["program_id_index"],
            accounts=tuple(data.get("accounts", [])),
            data=base64.b64decode(data.get("data", "")),
        )


@dataclass(frozen=True)
class CompiledTransaction:
    """
    A batch of compiled instructions plus the deduplicated account table.

    Attributes:
        accounts: Deduplicated account table, in first-reference order
        instructions: Compiled instructions, in original order
        signer_seeds: Seed lists the broker signs with when replaying
    """
    accounts: tuple[AccountRef, ...] = ()
    instructions: tuple[CompiledInstruction, ...] = ()
    signer_seeds: tuple[tuple[bytes, ...], ...] = field(default_factory=tuple)

    def __post_init__(self):
        if len(set(self.accounts)) != len(self.accounts):
            raise CompileError("Account table contains duplicate entries")

        table_size = len(self.accounts)
        for n, ix in enumerate(self.instructions):
            referenced = (ix.program_id_index, *ix.accounts)
            for index in referenced:
                if not 0 <= index < table_size:
                    raise CompileError(
                        f"Instruction {n} references account index {index} "
                        f"outside table of size {table_size}"
                    )

    @property
    def remaining_accounts(self) -> list[AccountMeta]:
        """Account metas to pass alongside the compiled form when registering it."""
        return [ref.to_meta() for ref in self.accounts]

    @property
    def digest(self) -> str:
        return _hash_canonical(self.to_dict())

    def to_dict(self) -> dict[str, Any]:
        return {
            "accounts": [ref.to_dict() for ref in self.accounts],
            "instructions": [ix.to_dict() for ix in self.instructions],
            "signer_seeds": [[seed.hex() for seed in seeds] for seeds in self.signer_seeds],
        }

    def to_bytes(self) -> bytes:
        return json.dumps(self.to_dict(), sort_keys=True, separators=(",", ":")).encode()

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "CompiledTransaction":
        return cls(
            accounts=tuple(AccountRef.from_dict(a) for a in data.get("accounts", [])),
            instructions=tuple(CompiledInstruction.from_dict(i) for i in data.get("instructions", [])),
            signer_seeds=tuple(
                tuple(bytes.fromhex(seed) for seed in seeds)
                for seeds in data.get("signer_seeds", [])
            ),
        )
