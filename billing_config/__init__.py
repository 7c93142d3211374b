"""
billing_config -- single public entrypoint for billing configuration.

Responsibility:
    ``get_billing_config()`` is the only way runtime code obtains
    settings.  No other component reads configuration files or
    environment variables.

Architecture position:
    Configuration.  Sits beside ``billing_kernel``; modules and services
    consume the returned ``BillingConfig``.  The kernel never imports
    from this package.

Audit relevance:
    Every call emits a ``billing_config_loaded`` log entry with the
    config id, version, source path and checksum.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path

from billing_config.loader import load_yaml_file, parse_billing_config
from billing_config.schema import BillingConfig

_logger = logging.getLogger("billing_kernel.config")

CONFIG_ENV_VAR = "BILLING_CONFIG"
DEFAULTS_PATH = Path(__file__).parent / "defaults.yaml"


def get_billing_config(path: Path | str | None = None) -> BillingConfig:
    """
    Load billing configuration.

    Source order: ``path`` if given, then ``$BILLING_CONFIG``, then the
    packaged ``defaults.yaml``.

    Raises:
        FileNotFoundError: If the chosen file does not exist.
        ValueError: If a value fails validation.
    """
    source = Path(path or os.environ.get(CONFIG_ENV_VAR) or DEFAULTS_PATH)
    config = parse_billing_config(load_yaml_file(source))

    _logger.info(
        "billing_config_loaded",
        extra={
            "config_id": config.config_id,
            "config_version": config.version,
            "source": str(source),
            "checksum": config.checksum,
        },
    )
    return config


__all__ = [
    "BillingConfig",
    "CONFIG_ENV_VAR",
    "DEFAULTS_PATH",
    "get_billing_config",
]
