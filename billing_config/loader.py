"""
Configuration Loader (``billing_config.loader``).

Responsibility
--------------
Reads a YAML file and parses its ``billing`` section into a
``BillingConfig``.  Runtime callers use ``billing_config.get_billing_config()``
instead of calling this module directly.

Failure modes
-------------
* Missing YAML file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
* Unknown keys or bad values  -> ``ValueError``.
"""

from __future__ import annotations

import hashlib
import json
from dataclasses import fields
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any

import yaml

from billing_config.schema import BillingConfig

_KNOWN_KEYS = frozenset(f.name for f in fields(BillingConfig)) - {"checksum"}


def load_yaml_file(path: Path) -> dict[str, Any]:
    """Load one YAML file; an empty file yields an empty dict."""
    with open(path) as f:
        return yaml.safe_load(f) or {}


def compute_checksum(data: dict[str, Any]) -> str:
    """SHA-256 of the canonical JSON form of ``data``."""
    canonical = json.dumps(data, sort_keys=True, default=str)
    return hashlib.sha256(canonical.encode()).hexdigest()


def parse_billing_config(data: dict[str, Any]) -> BillingConfig:
    """
    Build a ``BillingConfig`` from parsed YAML.

    Accepts either the whole document (with a top-level ``billing`` key)
    or the section itself.  Missing keys keep their defaults.
    """
    section = data.get("billing", data) if data else {}
    unknown = set(section) - _KNOWN_KEYS
    if unknown:
        raise ValueError(f"Unknown billing configuration keys: {sorted(unknown)}")

    values = dict(section)
    if "share_tolerance" in values:
        try:
            values["share_tolerance"] = Decimal(str(values["share_tolerance"]))
        except InvalidOperation as exc:
            raise ValueError(
                f"share_tolerance is not a number: {values['share_tolerance']!r}"
            ) from exc
    for key in ("version", "number_width", "payment_term_days"):
        if key in values:
            values[key] = int(values[key])
    for key in ("partially_paid_on_credit", "split_by_owner"):
        if key in values and not isinstance(values[key], bool):
            raise ValueError(f"{key} must be true or false")

    return BillingConfig(**values, checksum=compute_checksum(section))
