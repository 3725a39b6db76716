"""Tests for tukcron.compiler module.

Tests the account table (dedup by full role triple, first-reference order),
index recording, byte-identical output and CompiledTransaction invariants.
"""

import pytest
from solders.instruction import AccountMeta, Instruction
from solders.pubkey import Pubkey

from tukcron import instructions as ixs
from tukcron.compiler import Compiler, compile_transaction
from tukcron.schemas import (
    AccountRef,
    CompiledInstruction,
    CompiledTransaction,
    CompileError,
)


@pytest.fixture
def keys():
    return {name: Pubkey.new_unique() for name in ("payer", "a", "b", "program", "other_program")}


def _ix(program, metas, data=b"\x01"):
    return Instruction(program, data, metas)


class TestCompiler:
    """Tests for the Compiler class."""

    def test_single_instruction_layout(self, keys):
        ix = _ix(keys["program"], [
            AccountMeta(keys["payer"], True, True),
            AccountMeta(keys["a"], False, True),
        ])
        compiled = Compiler().compile([ix])

        assert compiled.accounts == (
            AccountRef(keys["payer"], True, True),
            AccountRef(keys["a"], False, True),
            AccountRef(keys["program"], False, False),
        )
        assert compiled.instructions == (
            CompiledInstruction(program_id_index=2, accounts=(0, 1), data=b"\x01"),
        )

    def test_same_role_merged(self, keys):
        first = _ix(keys["program"], [AccountMeta(keys["a"], False, True)])
        second = _ix(keys["program"], [AccountMeta(keys["a"], False, True)], data=b"\x02")
        compiled = compile_transaction([first, second])

        assert len(compiled.accounts) == 2
        assert compiled.instructions[0].accounts == compiled.instructions[1].accounts == (0,)
        assert compiled.instructions[0].program_id_index == compiled.instructions[1].program_id_index == 1

    def test_different_roles_kept_separate(self, keys):
        ix = _ix(keys["program"], [
            AccountMeta(keys["a"], False, True),
            AccountMeta(keys["a"], False, False),
        ])
        compiled = compile_transaction([ix])

        assert compiled.accounts[0] == AccountRef(keys["a"], False, True)
        assert compiled.accounts[1] == AccountRef(keys["a"], False, False)
        assert compiled.instructions[0].accounts == (0, 1)

    def test_program_id_shares_entry_with_readonly_account(self, keys):
        ix = _ix(keys["program"], [AccountMeta(keys["program"], False, False)])
        compiled = compile_transaction([ix])

        assert compiled.accounts == (AccountRef(keys["program"], False, False),)
        assert compiled.instructions[0].program_id_index == 0
        assert compiled.instructions[0].accounts == (0,)

    def test_first_reference_order_across_instructions(self, keys):
        first = _ix(keys["program"], [AccountMeta(keys["a"], False, True)])
        second = _ix(keys["other_program"], [
            AccountMeta(keys["b"], False, True),
            AccountMeta(keys["a"], False, True),
        ])
        compiled = compile_transaction([first, second])

        assert [ref.pubkey for ref in compiled.accounts] == [
            keys["a"], keys["program"], keys["b"], keys["other_program"],
        ]
        assert compiled.instructions[1].accounts == (2, 0)
        assert compiled.instructions[1].program_id_index == 3

    def test_duplicate_meta_within_instruction_repeats_index(self, keys):
        ix = _ix(keys["program"], [
            AccountMeta(keys["a"], False, True),
            AccountMeta(keys["a"], False, True),
        ])
        compiled = compile_transaction([ix])
        assert compiled.instructions[0].accounts == (0, 0)

    def test_byte_identical_output(self, keys, programs):
        ix = ixs.interact_with_llm_ix(
            programs.oracle,
            payer=keys["payer"],
            interaction=keys["a"],
            context_account=keys["b"],
            text="ping",
            callback_program=programs.oracle,
        )
        first = Compiler().compile([ix])
        second = Compiler().compile([ix])

        assert first.to_bytes() == second.to_bytes()
        assert first.digest == second.digest

    def test_empty_input_rejected(self):
        with pytest.raises(CompileError, match="empty"):
            Compiler().compile([])

    def test_account_limit(self, keys):
        metas = [AccountMeta(Pubkey.new_unique(), False, True) for _ in range(4)]
        with pytest.raises(CompileError, match="max 3"):
            Compiler(max_accounts=3).compile([_ix(keys["program"], metas)])

    def test_signer_seeds_carried(self, keys):
        ix = _ix(keys["program"], [AccountMeta(keys["a"], False, True)])
        compiled = compile_transaction([ix], signer_seeds=[[b"queue_authority"]])
        assert compiled.signer_seeds == ((b"queue_authority",),)

    def test_remaining_accounts(self, keys):
        ix = _ix(keys["program"], [AccountMeta(keys["payer"], True, True)])
        compiled = compile_transaction([ix])

        metas = compiled.remaining_accounts
        assert metas[0] == AccountMeta(keys["payer"], True, True)
        assert metas[1] == AccountMeta(keys["program"], False, False)


class TestCompiledTransaction:
    """Tests for CompiledTransaction invariants and serialization."""

    def test_out_of_range_index_rejected(self, keys):
        with pytest.raises(CompileError, match="outside table"):
            CompiledTransaction(
                accounts=(AccountRef(keys["program"]),),
                instructions=(CompiledInstruction(program_id_index=0, accounts=(1,)),),
            )

    def test_duplicate_entries_rejected(self, keys):
        with pytest.raises(CompileError, match="duplicate"):
            CompiledTransaction(accounts=(AccountRef(keys["a"]), AccountRef(keys["a"])))

    def test_from_dict_restores_equal_value(self, keys):
        ix = _ix(keys["program"], [AccountMeta(keys["payer"], True, True)], data=b"\x00\xff")
        compiled = compile_transaction([ix], signer_seeds=[[b"seed", b"\x01"]])
        assert CompiledTransaction.from_dict(compiled.to_dict()) == compiled

    def test_digest_changes_with_data(self, keys):
        metas = [AccountMeta(keys["a"], False, True)]
        a = compile_transaction([_ix(keys["program"], metas, data=b"\x01")])
        b = compile_transaction([_ix(keys["program"], metas, data=b"\x02")])
        assert a.digest != b.digest
        assert a.digest.startswith("sha256:")
