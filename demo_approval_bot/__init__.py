"""Demo approval bot package initialisation."""

from .background import run_async  # noqa: F401
from .config import AppSettings, get_settings  # noqa: F401
from .logging_config import configure_logging  # noqa: F401
from .qa import SlaRelay, build_relay  # noqa: F401
from .registry import ApprovalRecord, ApprovalRegistry  # noqa: F401
from .workflow import ApprovalWorkflow  # noqa: F401

__all__ = [
    "AppSettings",
    "get_settings",
    "run_async",
    "configure_logging",
    "SlaRelay",
    "build_relay",
    "ApprovalRecord",
    "ApprovalRegistry",
    "ApprovalWorkflow",
]
