"""
billing_config -- single public entrypoint for billing configuration.

Responsibility:
    ``get_active_config()`` is the only way services obtain configuration.
    No other component reads configuration files or environment variables
    directly.

Audit relevance:
    Every call emits a ``billing_config_loaded`` log entry with the set
    name, version and checksum, tying each export and claim back to the
    configuration that governed it.
"""

from __future__ import annotations

from pathlib import Path

from billing_config.loader import load_config_set
from billing_config.schema import (
    BillingConfig,
    ClaimPolicy,
    EvidencePolicy,
    OracleDefaults,
)
from billing_kernel.logging_config import get_logger

__all__ = [
    "BillingConfig",
    "ClaimPolicy",
    "EvidencePolicy",
    "OracleDefaults",
    "get_active_config",
]

_logger = get_logger("config")

_DEFAULT_CONFIG_DIR = Path(__file__).parent / "sets"


def get_active_config(
    config_set: str = "default",
    config_dir: Path | None = None,
) -> BillingConfig:
    """The ONLY public configuration entrypoint.

    Args:
        config_set: Name of the YAML set (``<config_dir>/<config_set>.yaml``).
        config_dir: Override path to configuration sets directory.
            Defaults to billing_config/sets/.

    Raises:
        FileNotFoundError: If the configuration set does not exist.
        ValueError: If the set fails schema validation.
    """
    sets_dir = config_dir or _DEFAULT_CONFIG_DIR
    path = sets_dir / f"{config_set}.yaml"
    if not path.is_file():
        raise FileNotFoundError(f"No billing configuration set at {path}")

    config = load_config_set(path)
    _logger.info(
        "billing_config_loaded",
        extra={
            "config_set": config.name,
            "config_version": config.version,
            "checksum": config.checksum,
        },
    )
    return config
