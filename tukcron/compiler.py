"""
Compiler - Transform a batch of instructions into a CompiledTransaction.

The compiler:
- walks instructions in order, then each instruction's accounts in order,
  then the instruction's program id (read-only, non-signer)
- looks up or appends every reference in a shared account table keyed by
  (pubkey, is_signer, is_writable)
- records table indices in place of raw account metas

The resulting CompiledTransaction has:
- a deduplicated account table in first-reference order
- instructions in original order referencing the table by index
- the signer seed lists the broker needs when replaying

Compilation is pure: no network or state access, and the same input always
yields byte-identical output, so a retry can safely re-compile.
"""

from typing import Optional, Sequence

from solders.instruction import Instruction

from tukcron.schemas import (
    AccountRef,
    CompiledInstruction,
    CompiledTransaction,
    CompileError,
)


class _AccountTable:
    """Accumulating, insertion-ordered account table."""

    def __init__(self):
        self._refs: list[AccountRef] = []
        self._index: dict[AccountRef, int] = {}

    def index_of(self, ref: AccountRef) -> int:
        if ref not in self._index:
            self._index[ref] = len(self._refs)
            self._refs.append(ref)
        return self._index[ref]

    def freeze(self) -> tuple[AccountRef, ...]:
        return tuple(self._refs)


class Compiler:
    """
    Compiler for packing instructions into a CompiledTransaction.

    Usage:
        compiler = Compiler()
        compiled = compiler.compile([interact_ix])
        compiled.remaining_accounts  # metas to pass when registering
    """

    def __init__(self, max_accounts: int = 256):
        """
        Initialize the compiler.

        Args:
            max_accounts: Upper bound on the account table size (indices are
                stored as u8 by the broker)
        """
        self._max_accounts = max_accounts

    def compile(
        self,
        instructions: Sequence[Instruction],
        signer_seeds: Optional[Sequence[Sequence[bytes]]] = None,
    ) -> CompiledTransaction:
        """
        Compile instructions into a CompiledTransaction.

        Args:
            instructions: Ordered instructions
            signer_seeds: Seed lists for program-derived signers

        Returns:
            The compiled transaction

        Raises:
            CompileError: If the input is empty or the table overflows
        """
        if not instructions:
            raise CompileError("Cannot compile an empty instruction list")

        table = _AccountTable()
        compiled: list[CompiledInstruction] = []

        for ix in instructions:
            account_indices = tuple(
                table.index_of(AccountRef.from_meta(meta)) for meta in ix.accounts
            )
            program_index = table.index_of(AccountRef(pubkey=ix.program_id))
            compiled.append(CompiledInstruction(
                program_id_index=program_index,
                accounts=account_indices,
                data=bytes(ix.data),
            ))

        accounts = table.freeze()
        if len(accounts) > self._max_accounts:
            raise CompileError(
                f"Account table has {len(accounts)} entries (max {self._max_accounts})"
            )

        return CompiledTransaction(
            accounts=accounts,
            instructions=tuple(compiled),
            signer_seeds=tuple(tuple(bytes(s) for s in seeds) for seeds in (signer_seeds or ())),
        )


def compile_transaction(
    instructions: Sequence[Instruction],
    signer_seeds: Optional[Sequence[Sequence[bytes]]] = None,
) -> CompiledTransaction:
    """
    Convenience function to compile instructions with default limits.

    Args:
        instructions: Ordered instructions
        signer_seeds: Seed lists for program-derived signers

    Returns:
        The compiled transaction
    """
    return Compiler().compile(instructions, signer_seeds)
