"""
Address derivation - deterministic program addresses for every resource.

All resources in the scheduling workflow (queue authority grants, cron jobs,
cron transaction slots, oracle contexts, interactions) live at program
derived addresses. An address is a pure function of:

    (namespace_tag, ordered seeds, owning program)

It is never stored independently: callers recompute it from canonical seeds
whenever they need it.

Seed rules:
- bytes are used verbatim, str is UTF-8 encoded, Pubkey contributes its
  32 raw bytes
- integers are rejected; encode them explicitly with u16_seed / u32_seed
  so the width and byte order are part of the call site
- each seed is at most 32 bytes, and tag + seeds is at most 15 entries
  (the bump seed takes the 16th slot)

Dynamic seeds:
    Some addresses depend on a value read from external state (a counter).
    Derivation stays pure: read the counter first (read_counter), then
    pass the encoded value as a seed.
"""

import hashlib
import struct
from typing import Sequence, Union

from solders.pubkey import Pubkey

from tukcron.errors import InvalidSeed


MAX_SEED_LEN = 32
MAX_SEEDS = 15

Seed = Union[bytes, str, Pubkey]


# Namespace tags (first seed of each derivation)
TASK_QUEUE_AUTHORITY = b"task_queue_authority"
TUKTUK_CONFIG = b"tuktuk_config"
TASK_QUEUE = b"task_queue"
TASK = b"task"
CRON_JOB = b"cron_job"
CRON_JOB_NAME_MAPPING = b"cron_job_name_mapping"
CRON_JOB_TRANSACTION = b"cron_job_transaction"
COUNTER = b"counter"
CONTEXT = b"test-context"
INTERACTION = b"interaction"
QUEUE_AUTHORITY = b"queue_authority"


def _encode_seed(seed: Seed, position: int) -> bytes:
    if isinstance(seed, Pubkey):
        encoded = bytes(seed)
    elif isinstance(seed, (bytes, bytearray)):
        encoded = bytes(seed)
    elif isinstance(seed, str):
        encoded = seed.encode("utf-8")
    else:
        raise InvalidSeed(
            f"Seed {position} has unsupported type {type(seed).__name__}; "
            f"use bytes, str, Pubkey or an explicit integer encoder"
        )

    if len(encoded) > MAX_SEED_LEN:
        raise InvalidSeed(
            f"Seed {position} is {len(encoded)} bytes (max {MAX_SEED_LEN})"
        )
    return encoded


def encode_seeds(namespace_tag: Seed, seeds: Sequence[Seed]) -> list[bytes]:
    """
    Encode a namespace tag and seed list into raw seed bytes.

    Raises:
        InvalidSeed: If any seed is malformed or there are too many seeds
    """
    if isinstance(seeds, (bytes, str)):
        raise InvalidSeed("seeds must be a sequence of seeds, not a single value")

    raw = [_encode_seed(namespace_tag, 0)]
    raw.extend(_encode_seed(seed, i + 1) for i, seed in enumerate(seeds))

    if len(raw) > MAX_SEEDS:
        raise InvalidSeed(f"Too many seeds: {len(raw)} (max {MAX_SEEDS} including tag)")
    return raw


def derive_with_bump(namespace_tag: Seed, seeds: Sequence[Seed], owner: Pubkey) -> tuple[Pubkey, int]:
    """
    Derive a program address and return it together with its bump seed.

    Args:
        namespace_tag: Leading seed naming the resource family
        seeds: Ordered seed list
        owner: Owning program id

    Returns:
        (address, bump) tuple

    Raises:
        InvalidSeed: If the seeds or owner are malformed
    """
    if not isinstance(owner, Pubkey):
        raise InvalidSeed(f"owner must be a Pubkey, got {type(owner).__name__}")

    raw = encode_seeds(namespace_tag, seeds)
    return Pubkey.find_program_address(raw, owner)


def derive(namespace_tag: Seed, seeds: Sequence[Seed], owner: Pubkey) -> Pubkey:
    """
    Derive the deterministic address of a resource.

    Identical inputs always yield identical output.

    Example:
        >>> derive(b"counter", [], oracle_program)
        Pubkey(...)
    """
    return derive_with_bump(namespace_tag, seeds, owner)[0]


# =============================================================================
# Integer seed encoders
# =============================================================================

def u16_seed(value: int) -> bytes:
    """Encode an unsigned 16-bit integer as a little-endian seed."""
    try:
        return struct.pack("<H", value)
    except struct.error as e:
        raise InvalidSeed(f"Cannot encode {value!r} as u16: {e}") from e


def u32_seed(value: int) -> bytes:
    """Encode an unsigned 32-bit integer as a little-endian seed."""
    try:
        return struct.pack("<I", value)
    except struct.error as e:
        raise InvalidSeed(f"Cannot encode {value!r} as u32: {e}") from e


def name_seed(name: str) -> bytes:
    """Hash a free-form name into a fixed 32-byte seed."""
    return hashlib.sha256(name.encode("utf-8")).digest()


# =============================================================================
# Named derivations used by the workflow
# =============================================================================

def tuktuk_config_key(tuktuk_program: Pubkey) -> Pubkey:
    return derive(TUKTUK_CONFIG, [], tuktuk_program)


def task_queue_key(tuktuk_config: Pubkey, queue_id: int, tuktuk_program: Pubkey) -> Pubkey:
    return derive(TASK_QUEUE, [tuktuk_config, u32_seed(queue_id)], tuktuk_program)


def task_queue_authority_key(task_queue: Pubkey, queue_authority: Pubkey, tuktuk_program: Pubkey) -> Pubkey:
    """Address of the grant allowing queue_authority to queue tasks on task_queue."""
    return derive(TASK_QUEUE_AUTHORITY, [task_queue, queue_authority], tuktuk_program)


def task_key(task_queue: Pubkey, task_id: int, tuktuk_program: Pubkey) -> Pubkey:
    return derive(TASK, [task_queue, u16_seed(task_id)], tuktuk_program)


def cron_job_key(authority: Pubkey, cron_job_id: int, cron_program: Pubkey) -> Pubkey:
    return derive(CRON_JOB, [authority, u32_seed(cron_job_id)], cron_program)


def cron_job_name_mapping_key(authority: Pubkey, name: str, cron_program: Pubkey) -> Pubkey:
    return derive(CRON_JOB_NAME_MAPPING, [authority, name_seed(name)], cron_program)


def cron_job_transaction_key(cron_job: Pubkey, index: int, cron_program: Pubkey) -> Pubkey:
    """Address of the transaction slot at index within a cron job."""
    return derive(CRON_JOB_TRANSACTION, [cron_job, u32_seed(index)], cron_program)


def counter_key(oracle_program: Pubkey) -> Pubkey:
    return derive(COUNTER, [], oracle_program)


def context_key(context_index: int, oracle_program: Pubkey) -> Pubkey:
    """Address of the LLM context record created when the counter was at context_index."""
    return derive(CONTEXT, [u32_seed(context_index)], oracle_program)


def interaction_key(user: Pubkey, context: Pubkey, oracle_program: Pubkey) -> Pubkey:
    return derive(INTERACTION, [user, context], oracle_program)


def queue_authority_key(program: Pubkey) -> Pubkey:
    """Program-owned authority that queues one-shot tasks on the program's behalf."""
    return derive(QUEUE_AUTHORITY, [], program)


def queue_authority_signer_seeds(program: Pubkey) -> list[bytes]:
    """Seeds (bump last) the program signs with as its queue authority."""
    _, bump = derive_with_bump(QUEUE_AUTHORITY, [], program)
    return [QUEUE_AUTHORITY, bytes([bump])]
