"""
approval_config -- single public entrypoint for approval configuration.

Responsibility:
    Turns a YAML-authored workflow pack (workflows, rules, settings) into a
    validated ``CompiledWorkflowPack`` through ``get_active_config()``, and
    persists a compiled pack for an organization through ``install_pack()``.

Architecture position:
    Configuration -- sits above ``approval_kernel`` and beside
    ``approval_services``.  The kernel MUST NEVER import from
    ``approval_config``.

Invariants enforced:
    - Single entrypoint: runtime callers obtain packs only via
      ``get_active_config()``.
    - Validation before compilation: a pack with validation errors is
      refused as a whole with ``ConfigurationError``.
    - Deterministic: the same YAML always yields the same checksum.

Failure modes:
    - ``FileNotFoundError`` -- missing pack path.
    - ``yaml.YAMLError`` / ``ValueError`` / ``KeyError`` -- unparseable pack.
    - ``ConfigurationError`` -- validation errors.

Every successful ``get_active_config()`` call emits an
``APPROVAL_CONFIG_TRACE`` log record with the checksum and counts.
"""

from __future__ import annotations

from pathlib import Path

from approval_config.compiler import (
    CompiledRule,
    CompiledWorkflow,
    CompiledWorkflowPack,
    compile_pack,
)
from approval_config.installer import InstallResult, install_pack
from approval_config.loader import load_pack
from approval_config.validator import ConfigValidationResult, validate_pack
from approval_kernel.logging_config import get_logger

_logger = get_logger("config")

# Default configuration sets directory
_DEFAULT_CONFIG_DIR = Path(__file__).parent / "sets"
DEFAULT_PACK = "standard"


def get_active_config(config_path: Path | str | None = None) -> CompiledWorkflowPack:
    """The public configuration entrypoint.

    Args:
        config_path: YAML file or fragment directory.  Defaults to the
            bundled ``sets/standard`` pack.

    Raises:
        FileNotFoundError: the path does not exist.
        ConfigurationError: the pack failed validation.
    """
    path = Path(config_path) if config_path is not None else _DEFAULT_CONFIG_DIR / DEFAULT_PACK

    source = load_pack(path)
    validation = validate_pack(source)
    for warning in validation.warnings:
        _logger.warning("approval_config_warning", extra={"warning": warning})

    pack = compile_pack(source)

    _logger.info(
        "APPROVAL_CONFIG_TRACE",
        extra={
            "trace_type": "APPROVAL_CONFIG_TRACE",
            "source_path": pack.source_path,
            "checksum": pack.checksum,
            "rule_priority_order": pack.rule_priority_order.value,
            "default_rejection_policy": pack.default_rejection_policy.value,
            "workflow_count": len(pack.workflows),
            "rule_count": len(pack.rules),
        },
    )
    return pack


__all__ = [
    "CompiledRule",
    "CompiledWorkflow",
    "CompiledWorkflowPack",
    "ConfigValidationResult",
    "InstallResult",
    "compile_pack",
    "get_active_config",
    "install_pack",
    "load_pack",
    "validate_pack",
]
