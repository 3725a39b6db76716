"""
Configuration management for tukcron.

Loads config.yaml from the tukcron home directory ($TUKCRON_HOME, default
~/.config/tukcron) and an optional dotenv file named by `env_file`.

Everything the pipeline needs is a plain value here: job and queue names,
schedule, funding amount, context index, program ids and endpoints. Nothing
is read from module state at run time.
"""

import json
import os
from dataclasses import asdict, dataclass, field, fields
from pathlib import Path
from typing import Any, Optional

import yaml
from dotenv import load_dotenv
from solders.keypair import Keypair
from solders.pubkey import Pubkey

from tukcron.instructions import LAMPORTS_PER_SOL
from tukcron.schemas import validate_schedule


DEFAULT_TUKTUK_PROGRAM = "tuktukUrfhXT6ZT77QTU8RQtvgL967uRuVagWF57zVA"
DEFAULT_CRON_PROGRAM = "cronAjRZnJn3MTP3B9kE62NWDrjSuAPVXf9c4hu4grM"
DEFAULT_ORACLE_PROGRAM = "LLMrieZMpbJFwN52WgmBNMxYojrpRVYXdC1RCweEbab"
DEFAULT_DELEGATION_PROGRAM = "DELeGGvXpWV2fqJUhqcF5ZSYMS4JTLjteaAMARRSaeSh"


class ConfigError(Exception):
    """Configuration validation error."""
    pass


def get_tukcron_home() -> Path:
    """Directory holding config.yaml, .env and the simulation state file."""
    home = os.environ.get("TUKCRON_HOME")
    if home:
        return Path(home)
    return Path("~/.config/tukcron").expanduser()


@dataclass(frozen=True)
class ProgramIds:
    """Parsed program ids of the collaborating programs."""
    tuktuk: Pubkey
    cron: Pubkey
    oracle: Pubkey
    delegation: Pubkey

    @classmethod
    def from_dict(cls, data: dict[str, str]) -> "ProgramIds":
        try:
            return cls(
                tuktuk=Pubkey.from_string(data.get("tuktuk", DEFAULT_TUKTUK_PROGRAM)),
                cron=Pubkey.from_string(data.get("cron", DEFAULT_CRON_PROGRAM)),
                oracle=Pubkey.from_string(data.get("oracle", DEFAULT_ORACLE_PROGRAM)),
                delegation=Pubkey.from_string(data.get("delegation", DEFAULT_DELEGATION_PROGRAM)),
            )
        except ValueError as e:
            raise ConfigError(f"Invalid program id: {e}") from e


def _default_programs() -> dict[str, str]:
    return {
        "tuktuk": DEFAULT_TUKTUK_PROGRAM,
        "cron": DEFAULT_CRON_PROGRAM,
        "oracle": DEFAULT_ORACLE_PROGRAM,
        "delegation": DEFAULT_DELEGATION_PROGRAM,
    }


def _default_retry() -> dict[str, Any]:
    return {"max_attempts": 3, "backoff_seconds": 0.5}


@dataclass
class TukcronConfig:
    rpc_url: str = "https://api.devnet.solana.com"
    ephemeral_rpc_url: str = "https://devnet.magicblock.app/"
    ephemeral_ws_url: Optional[str] = "wss://devnet.magicblock.app/"
    wallet: str = "~/.config/solana/id.json"

    cron_name: str = "llm-interaction"
    queue_name: str = "tukcron"
    schedule: str = "0 * * * * *"
    funding_lamports: int = LAMPORTS_PER_SOL // 100

    context_index: int = 0
    context_text: str = "You are a helpful assistant."
    interaction_text: str = "Scheduled interaction from TukTuk cron"

    free_tasks_per_transaction: int = 0
    num_tasks_per_queue_call: int = 1

    programs: dict[str, str] = field(default_factory=_default_programs)

    state_path: Optional[str] = None
    retry: dict[str, Any] = field(default_factory=_default_retry)

    log_level: str = "INFO"
    log_format: str = "pretty"
    log_file: Optional[str] = None
    env_file: Optional[str] = None

    def validate(self) -> None:
        """
        Validate value ranges.

        Raises:
            ConfigError: If any value is out of range
        """
        if not self.cron_name:
            raise ConfigError("cron_name must not be empty")
        if not self.queue_name:
            raise ConfigError("queue_name must not be empty")
        try:
            validate_schedule(self.schedule)
        except ValueError as e:
            raise ConfigError(str(e)) from e
        if self.funding_lamports < 0:
            raise ConfigError("funding_lamports must be >= 0")
        if not 0 <= self.context_index <= 0xFFFFFFFF:
            raise ConfigError("context_index must fit in a u32")
        if self.free_tasks_per_transaction < 0:
            raise ConfigError("free_tasks_per_transaction must be >= 0")
        if self.num_tasks_per_queue_call < 1:
            raise ConfigError("num_tasks_per_queue_call must be >= 1")
        if self.log_format not in ("pretty", "structured"):
            raise ConfigError(f"log_format must be 'pretty' or 'structured', got {self.log_format!r}")
        self.program_ids()

    def program_ids(self) -> ProgramIds:
        return ProgramIds.from_dict(self.programs)

    def get_state_path(self) -> Path:
        if self.state_path:
            return Path(self.state_path).expanduser()
        return get_tukcron_home() / "state.json"

    def wallet_pubkey(self) -> Pubkey:
        """
        Resolve the wallet to its public key.

        `wallet` is either a base58 public key or the path of a keypair JSON
        file (a list of 64 secret key bytes, as written by solana-keygen).

        Raises:
            ConfigError: If the wallet can be read as neither
        """
        try:
            return Pubkey.from_string(self.wallet)
        except ValueError:
            pass

        path = Path(self.wallet).expanduser()
        if not path.exists():
            raise ConfigError(f"Wallet is neither a public key nor an existing keypair file: {self.wallet}")
        try:
            with open(path) as f:
                secret = json.load(f)
            return Keypair.from_bytes(bytes(secret)).pubkey()
        except Exception as e:
            raise ConfigError(f"Invalid keypair file {path}: {e}") from e

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "TukcronConfig":
        known = {f.name for f in fields(cls)}
        unknown = set(data) - known
        if unknown:
            raise ConfigError(f"Unknown config keys: {', '.join(sorted(unknown))}")
        programs = _default_programs()
        programs.update(data.get("programs") or {})
        retry = _default_retry()
        retry.update(data.get("retry") or {})
        values = {k: v for k, v in data.items() if k not in ("programs", "retry")}
        return cls(programs=programs, retry=retry, **values)


def load_config(config_path: Optional[Path] = None) -> TukcronConfig:
    """
    Load tukcron configuration.

    Args:
        config_path: Path to config file. Defaults to $TUKCRON_HOME/config.yaml

    Returns:
        Validated TukcronConfig

    Raises:
        FileNotFoundError: If the config file does not exist
        ConfigError: If the config is invalid
    """
    if config_path is None:
        config_path = get_tukcron_home() / "config.yaml"

    if not config_path.exists():
        raise FileNotFoundError(f"tukcron config.yaml not found at {config_path}")

    try:
        with open(config_path) as f:
            data = yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML syntax: {e}") from e

    if not isinstance(data, dict):
        raise ConfigError("Configuration file must contain a mapping")

    config = TukcronConfig.from_dict(data)

    if config.env_file:
        env_path = Path(config.env_file).expanduser()
        if env_path.exists():
            load_dotenv(env_path)

    config.validate()
    return config
