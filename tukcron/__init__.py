"""
tukcron - Idempotent provisioning and scheduling of recurring oracle calls.

Derives every resource address deterministically, provisions what is
missing (check-then-create), compiles the interaction into a queue-ready
transaction and registers it with a recurring task broker. Re-running is
always safe.
"""

__version__ = "0.1.0"


__all__ = ["TukcronConfig", "load_config", "get_tukcron_home"]

from .config import TukcronConfig, load_config, get_tukcron_home
