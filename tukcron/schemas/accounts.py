"""
Account schemas - ledger-side records exchanged with the external store.

AccountInfo is what the ledger returns for an existing address.
Receipt is what the ledger returns for an accepted submission.
AccountRef is one entry of a compiled transaction's account table.
"""

import base64
from dataclasses import dataclass
from typing import Any

from solders.instruction import AccountMeta
from solders.pubkey import Pubkey


@dataclass(frozen=True)
class AccountInfo:
    """
    State of an existing account.

    Attributes:
        lamports: Balance in lamports
        owner: Program that owns (and may mutate) the account
        data: Raw account data
        executable: Whether the account holds a program
    """
    lamports: int
    owner: Pubkey
    data: bytes = b""
    executable: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "lamports": self.lamports,
            "owner": str(self.owner),
            "data": base64.b64encode(self.data).decode("ascii"),
            "executable": self.executable,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "AccountInfo":
        return cls(
            lamports=data["lamports"],
            owner=Pubkey.from_string(data["owner"]),
            data=base64.b64decode(data.get("data", "")),
            executable=data.get("executable", False),
        )


@dataclass(frozen=True)
class Receipt:
    """Acknowledgement of an accepted submission."""
    signature: str
    slot: int = 0


@dataclass(frozen=True)
class AccountRef:
    """
    An entry in a compiled transaction's account table.

    The full (pubkey, is_signer, is_writable) triple is the identity:
    two references to the same address with different roles are distinct
    entries, since the role decides execution permissions.
    """
    pubkey: Pubkey
    is_signer: bool = False
    is_writable: bool = False

    @classmethod
    def from_meta(cls, meta: AccountMeta) -> "AccountRef":
        return cls(pubkey=meta.pubkey, is_signer=meta.is_signer, is_writable=meta.is_writable)

    def to_meta(self) -> AccountMeta:
        return AccountMeta(pubkey=self.pubkey, is_signer=self.is_signer, is_writable=self.is_writable)

    def to_dict(self) -> dict[str, Any]:
        return {
            "pubkey": str(self.pubkey),
            "is_signer": self.is_signer,
            "is_writable": self.is_writable,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "AccountRef":
        return cls(
            pubkey=Pubkey.from_string(data["pubkey"]),
            is_signer=data.get("is_signer", False),
            is_writable=data.get("is_writable", False),
        )
