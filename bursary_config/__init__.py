"""
bursary_config -- single public entrypoint for bursary configuration.

Responsibility:
    Provides the ONLY way to obtain configuration at runtime through
    ``get_active_config()``.  Returns a frozen ``BursaryConfig``; the
    bridges turn it into the kernel's ``LedgerPolicy`` and approval
    brackets.

Architecture position:
    Configuration -- YAML-driven.  Sits above ``bursary_kernel`` and below
    ``bursary_services``.  The kernel MUST NEVER import from
    ``bursary_config``.

Invariants enforced:
    - Single entrypoint: all runtime config flows through ``get_active_config()``.
    - Validation: a configuration set that fails
      ``validate_configuration`` is never returned.
    - Deterministic identity: the same YAML content always yields the same
      checksum.

Failure modes:
    - ``ConfigurationNotFoundError`` -- no configuration set file with the
      requested name.
    - ``ValueError`` / ``KeyError`` -- schema or structural validation
      failures.
    - ``yaml.YAMLError`` -- the file is not valid YAML.

Audit relevance:
    Every successful ``get_active_config()`` call emits a
    ``BURSARY_CONFIG_TRACE`` log entry with the set name, version and
    checksum, tying the books to the configuration that governed them.
"""

from __future__ import annotations

import logging
from pathlib import Path

from bursary_config.loader import load_config_set
from bursary_config.schema import BursaryConfig
from bursary_config.validator import validate_configuration
from bursary_kernel.exceptions import ConfigurationNotFoundError

_logger = logging.getLogger("bursary_kernel.config")

# Default configuration sets directory
_DEFAULT_CONFIG_DIR = Path(__file__).parent / "sets"

__all__ = ["BursaryConfig", "get_active_config", "list_config_sets"]


def get_active_config(
    set_name: str = "default",
    config_dir: Path | None = None,
) -> BursaryConfig:
    """The ONLY public configuration entrypoint.

    Args:
        set_name: Name of the configuration set (``<set_name>.yaml``).
        config_dir: Override path to configuration sets directory.
            Defaults to bursary_config/sets/.

    Raises:
        ConfigurationNotFoundError: If no set with that name exists.
        ValueError: If configuration validation fails.
    """
    sets_dir = Path(config_dir) if config_dir is not None else _DEFAULT_CONFIG_DIR
    path = sets_dir / f"{set_name}.yaml"
    if not path.is_file():
        raise ConfigurationNotFoundError(set_name)

    config = load_config_set(path)

    validation = validate_configuration(config)
    if not validation.is_valid:
        raise ValueError(
            "Configuration validation failed:\n"
            + "\n".join(f"  - {e}" for e in validation.errors)
        )
    for warning in validation.warnings:
        _logger.warning("config_validation_warning", extra={"warning": warning})

    _logger.info(
        "BURSARY_CONFIG_TRACE",
        extra={
            "trace_type": "BURSARY_CONFIG_TRACE",
            "config_set_name": config.name,
            "config_set_version": config.version,
            "checksum": config.checksum,
            "currency": config.currency,
            "account_count": len(config.accounts),
            "bracket_count": len(config.approval_brackets),
        },
    )
    return config


def list_config_sets(config_dir: Path | None = None) -> list[str]:
    """Names of the configuration sets available in ``config_dir``."""
    sets_dir = Path(config_dir) if config_dir is not None else _DEFAULT_CONFIG_DIR
    if not sets_dir.is_dir():
        return []
    return sorted(p.stem for p in sets_dir.glob("*.yaml"))
