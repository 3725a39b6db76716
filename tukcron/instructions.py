"""
Instruction builders for the programs the workflow talks to.

Programs:
- system program: lamport transfers (funding)
- task queue program: queue authority grants
- oracle program: LLM contexts, interactions, delegation

Instruction data follows the Anchor convention: an 8-byte discriminator
(sha256("global:<instruction_name>")[:8]) followed by Borsh-encoded
arguments (little-endian integers, u32-length-prefixed strings and vectors,
one-byte Option tags).
"""

import hashlib
import struct
from typing import Optional, Sequence

from solders.instruction import AccountMeta, Instruction
from solders.pubkey import Pubkey
from solders.system_program import ID as SYSTEM_PROGRAM_ID
from solders.system_program import TransferParams, transfer

from tukcron.errors import PermanentError


LAMPORTS_PER_SOL = 1_000_000_000

DISCRIMINATOR_LEN = 8

ACCOUNT_STORAGE_OVERHEAD = 128
LAMPORTS_PER_BYTE = 6960

# Interaction record size before the prompt text (no forwarded account metas)
INTERACTION_BASE_SPACE = 121


def rent_exempt_minimum(space: int) -> int:
    """Minimum balance for an account holding `space` bytes of data."""
    return (ACCOUNT_STORAGE_OVERHEAD + space) * LAMPORTS_PER_BYTE


def interaction_rent(text: str) -> int:
    """Rent for the interaction record created by interact_with_llm(text)."""
    return rent_exempt_minimum(INTERACTION_BASE_SPACE + len(text.encode("utf-8")))


def anchor_discriminator(instruction_name: str) -> bytes:
    """Anchor instruction discriminator for a snake_case instruction name."""
    return hashlib.sha256(f"global:{instruction_name}".encode()).digest()[:DISCRIMINATOR_LEN]


def account_discriminator(account_name: str) -> bytes:
    """Anchor account discriminator for a CamelCase account type name."""
    return hashlib.sha256(f"account:{account_name}".encode()).digest()[:DISCRIMINATOR_LEN]


CREATE_LLM_CONTEXT = anchor_discriminator("create_llm_context")
INTERACT_WITH_LLM = anchor_discriminator("interact_with_llm")
CALLBACK_FROM_ORACLE = anchor_discriminator("callback_from_oracle")
DELEGATE_INTERACTION = anchor_discriminator("delegate_interaction")
ADD_QUEUE_AUTHORITY_V0 = anchor_discriminator("add_queue_authority_v0")

COUNTER_ACCOUNT = account_discriminator("Counter")
CONTEXT_ACCOUNT = account_discriminator("ContextAccount")


# =============================================================================
# Borsh encoding
# =============================================================================

def borsh_string(value: str) -> bytes:
    encoded = value.encode("utf-8")
    return struct.pack("<I", len(encoded)) + encoded


def borsh_account_metas(metas: Optional[Sequence[AccountMeta]]) -> bytes:
    """Encode Option<Vec<AccountMeta>> as (pubkey, is_signer, is_writable) tuples."""
    if metas is None:
        return b"\x00"
    out = bytearray(b"\x01")
    out += struct.pack("<I", len(metas))
    for meta in metas:
        out += bytes(meta.pubkey)
        out += struct.pack("<??", meta.is_signer, meta.is_writable)
    return bytes(out)


def encode_counter(count: int) -> bytes:
    return COUNTER_ACCOUNT + struct.pack("<I", count)


def decode_counter(data: bytes) -> int:
    """
    Decode the count stored in an oracle counter account.

    Raises:
        PermanentError: If the data is not a counter account
    """
    if len(data) < DISCRIMINATOR_LEN + 4 or data[:DISCRIMINATOR_LEN] != COUNTER_ACCOUNT:
        raise PermanentError("Account data is not an oracle counter")
    return struct.unpack_from("<I", data, DISCRIMINATOR_LEN)[0]


def encode_context(text: str) -> bytes:
    return CONTEXT_ACCOUNT + borsh_string(text)


# =============================================================================
# System program
# =============================================================================

def transfer_ix(from_pubkey: Pubkey, to_pubkey: Pubkey, lamports: int) -> Instruction:
    """System transfer used to fund freshly created resources."""
    return transfer(TransferParams(from_pubkey=from_pubkey, to_pubkey=to_pubkey, lamports=lamports))


# =============================================================================
# Task queue program
# =============================================================================

def add_queue_authority_ix(
    tuktuk_program: Pubkey,
    payer: Pubkey,
    update_authority: Pubkey,
    queue_authority: Pubkey,
    task_queue_authority: Pubkey,
    task_queue: Pubkey,
) -> Instruction:
    """Grant queue_authority the right to queue tasks on task_queue."""
    return Instruction(
        tuktuk_program,
        ADD_QUEUE_AUTHORITY_V0,
        [
            AccountMeta(payer, True, True),
            AccountMeta(update_authority, True, False),
            AccountMeta(queue_authority, False, False),
            AccountMeta(task_queue_authority, False, True),
            AccountMeta(task_queue, False, False),
            AccountMeta(SYSTEM_PROGRAM_ID, False, False),
        ],
    )


# =============================================================================
# Oracle program
# =============================================================================

def create_llm_context_ix(
    oracle_program: Pubkey,
    payer: Pubkey,
    counter: Pubkey,
    context_account: Pubkey,
    text: str,
) -> Instruction:
    """Create the context record at the address derived from the current counter."""
    return Instruction(
        oracle_program,
        CREATE_LLM_CONTEXT + borsh_string(text),
        [
            AccountMeta(payer, True, True),
            AccountMeta(counter, False, True),
            AccountMeta(context_account, False, True),
            AccountMeta(SYSTEM_PROGRAM_ID, False, False),
        ],
    )


def interact_with_llm_ix(
    oracle_program: Pubkey,
    payer: Pubkey,
    interaction: Pubkey,
    context_account: Pubkey,
    text: str,
    callback_program: Pubkey,
    callback_discriminator: bytes = CALLBACK_FROM_ORACLE,
    account_metas: Optional[Sequence[AccountMeta]] = None,
) -> Instruction:
    """
    Post a prompt to the oracle for the given context.

    Args:
        oracle_program: Oracle program id
        payer: Pays for the interaction record (a task PDA when replayed by
            the broker)
        interaction: Interaction record address (user + context)
        context_account: Context record address
        text: Prompt text
        callback_program: Program the oracle calls back with the response
        callback_discriminator: Discriminator of the callback instruction
        account_metas: Extra accounts forwarded to the callback

    Returns:
        The interact_with_llm instruction
    """
    if len(callback_discriminator) != DISCRIMINATOR_LEN:
        raise ValueError("callback_discriminator must be 8 bytes")

    data = (
        INTERACT_WITH_LLM
        + borsh_string(text)
        + bytes(callback_program)
        + bytes(callback_discriminator)
        + borsh_account_metas(account_metas)
    )
    return Instruction(
        oracle_program,
        data,
        [
            AccountMeta(payer, True, True),
            AccountMeta(interaction, False, True),
            AccountMeta(context_account, False, False),
            AccountMeta(SYSTEM_PROGRAM_ID, False, False),
        ],
    )


def delegate_interaction_ix(
    oracle_program: Pubkey,
    payer: Pubkey,
    interaction: Pubkey,
    context_account: Pubkey,
    delegation_program: Pubkey,
) -> Instruction:
    """Hand the interaction record to the delegation program."""
    return Instruction(
        oracle_program,
        DELEGATE_INTERACTION,
        [
            AccountMeta(payer, True, True),
            AccountMeta(interaction, False, True),
            AccountMeta(context_account, False, False),
            AccountMeta(oracle_program, False, False),
            AccountMeta(delegation_program, False, False),
            AccountMeta(SYSTEM_PROGRAM_ID, False, False),
        ],
    )
