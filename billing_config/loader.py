"""
Configuration Loader (``billing_config.loader``).

Responsibility
--------------
Loads a YAML configuration set and parses it into the frozen
``billing_config.schema`` dataclasses.  Build/test tooling: runtime
callers go through ``billing_config.get_active_config()``.

Failure modes
-------------
* Missing YAML file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
* Unknown keys in a section  -> ``ValueError``.
* Constraint violations  -> ``ValueError`` from the schema ``__post_init__``.
"""

from __future__ import annotations

import hashlib
import json
from dataclasses import fields
from decimal import Decimal
from pathlib import Path
from typing import Any

import yaml

from billing_config.schema import (
    BillingConfig,
    ClaimPolicy,
    EvidencePolicy,
    OracleDefaults,
)


def load_yaml_file(path: Path) -> dict[str, Any]:
    """Load a YAML file and return its contents as a dict."""
    with open(path) as f:
        return yaml.safe_load(f) or {}


def compute_checksum(data: dict[str, Any]) -> str:
    """SHA-256 of the canonical JSON serialization of ``data``."""
    canonical = json.dumps(data, sort_keys=True, default=str)
    return hashlib.sha256(canonical.encode()).hexdigest()


def _parse_section(cls: type, data: dict[str, Any] | None, section: str) -> Any:
    data = data or {}
    known = {f.name: f for f in fields(cls)}
    unknown = set(data) - set(known)
    if unknown:
        raise ValueError(f"Unknown keys in '{section}': {', '.join(sorted(unknown))}")
    kwargs: dict[str, Any] = {}
    for key, value in data.items():
        default = known[key].default
        # YAML floats/ints become Decimal where the schema holds Decimal
        if isinstance(default, Decimal):
            kwargs[key] = Decimal(str(value))
        else:
            kwargs[key] = value
    return cls(**kwargs)


def parse_config(data: dict[str, Any]) -> BillingConfig:
    """Parse a full configuration set dict."""
    return BillingConfig(
        name=data.get("name", "default"),
        version=int(data.get("version", 1)),
        checksum=compute_checksum(data),
        evidence=_parse_section(EvidencePolicy, data.get("evidence"), "evidence"),
        claims=_parse_section(ClaimPolicy, data.get("claims"), "claims"),
        oracle=_parse_section(OracleDefaults, data.get("oracle"), "oracle"),
    )


def load_config_set(path: Path) -> BillingConfig:
    return parse_config(load_yaml_file(path))
