"""
Configuration Loader (``approval_config.loader``).

Responsibility
--------------
Loads a workflow pack from one YAML file, or from a directory of YAML
fragments, and parses it into ``approval_config.schema`` dataclasses.
The runtime entry point is ``approval_config.get_active_config()``.

Architecture position
---------------------
**Config layer** -- build/test tooling.  No dependency on the database.

Invariants enforced
-------------------
* Required keys are never defaulted: a missing ``key``, ``name``,
  ``entity_type`` or step field raises ``KeyError``.
* Fragments of a directory are read in sorted file-name order; their
  ``workflows`` and ``rules`` lists are concatenated and later
  ``settings`` keys override earlier ones.
* ``compute_checksum`` is a deterministic SHA-256 over the merged raw data.

Failure modes
-------------
* Missing file or directory  -> ``FileNotFoundError``.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
* Wrong top-level shape  -> ``ValueError``.
"""

from __future__ import annotations

import hashlib
import json
from pathlib import Path
from typing import Any

import yaml

from approval_config.schema import (
    PolicyDef,
    RuleDef,
    SettingsDef,
    StepDef,
    WorkflowDef,
    WorkflowPackSource,
)

YAML_SUFFIXES = (".yaml", ".yml")


def load_yaml_file(path: Path) -> dict[str, Any]:
    """Load a single YAML file; an empty file is an empty dict."""
    with open(path) as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise ValueError(f"{path}: top level must be a mapping")
    return data


def compute_checksum(data: dict[str, Any]) -> str:
    """SHA-256 of the canonical JSON serialization of ``data``."""
    canonical = json.dumps(data, sort_keys=True, default=str)
    return hashlib.sha256(canonical.encode()).hexdigest()


def merge_fragments(fragments: list[dict[str, Any]]) -> dict[str, Any]:
    merged: dict[str, Any] = {"settings": {}, "workflows": [], "rules": []}
    for fragment in fragments:
        settings = fragment.get("settings") or {}
        if not isinstance(settings, dict):
            raise ValueError("'settings' must be a mapping")
        merged["settings"].update(settings)
        for section in ("workflows", "rules"):
            items = fragment.get(section) or []
            if not isinstance(items, list):
                raise ValueError(f"'{section}' must be a list")
            merged[section].extend(items)
    return merged


def parse_settings(data: dict[str, Any]) -> SettingsDef:
    defaults = SettingsDef()
    return SettingsDef(
        rule_priority_order=str(data.get("rule_priority_order", defaults.rule_priority_order)),
        default_rejection_policy=str(
            data.get("default_rejection_policy", defaults.default_rejection_policy)
        ),
    )


def parse_policy(data: dict[str, Any] | None) -> PolicyDef:
    data = data or {}
    return PolicyDef(
        require_comments=bool(data.get("require_comments", False)),
        allow_delegation=bool(data.get("allow_delegation", True)),
        timeout_hours=data.get("timeout_hours"),
        escalation_user_ids=tuple(str(u) for u in data.get("escalation_user_ids") or ()),
    )


def parse_step(data: dict[str, Any]) -> StepDef:
    return StepDef(
        step_order=data["step_order"],
        step_type=data["step_type"],
        approver_type=data["approver_type"],
        approver_ref=data["approver_ref"],
        min_approvals=data.get("min_approvals"),
        rejection_policy=data.get("rejection_policy"),
        is_active=bool(data.get("is_active", True)),
    )


def parse_workflow(data: dict[str, Any]) -> WorkflowDef:
    """
    Parse a ``WorkflowDef`` from a dict.

    Raises:
        KeyError: if ``key``, ``name`` or ``entity_type`` is missing, or a
            step lacks a required field.
    """
    return WorkflowDef(
        key=data["key"],
        name=data["name"],
        entity_type=data["entity_type"],
        steps=tuple(parse_step(s) for s in data.get("steps") or ()),
        policy=parse_policy(data.get("policy")),
        is_active=bool(data.get("is_active", True)),
        description=data.get("description"),
    )


def parse_rule(data: dict[str, Any]) -> RuleDef:
    return RuleDef(
        name=data["name"],
        entity_type=data["entity_type"],
        workflow=data["workflow"],
        conditions=tuple(data.get("conditions") or ()),
        priority=data.get("priority", 0),
        logic=str(data.get("logic", "AND")).upper(),
        is_active=bool(data.get("is_active", True)),
    )


def parse_pack(data: dict[str, Any], source_path: str = "") -> WorkflowPackSource:
    return WorkflowPackSource(
        settings=parse_settings(data.get("settings") or {}),
        workflows=tuple(parse_workflow(w) for w in data.get("workflows") or ()),
        rules=tuple(parse_rule(r) for r in data.get("rules") or ()),
        checksum=compute_checksum(data),
        source_path=source_path,
    )


def load_pack(path: Path | str) -> WorkflowPackSource:
    """Load a pack from a YAML file or a directory of YAML fragments."""
    path = Path(path)
    if path.is_dir():
        files = sorted(p for p in path.iterdir() if p.suffix in YAML_SUFFIXES)
        if not files:
            raise FileNotFoundError(f"No YAML files in configuration directory: {path}")
    elif path.is_file():
        files = [path]
    else:
        raise FileNotFoundError(f"Configuration path not found: {path}")

    merged = merge_fragments([load_yaml_file(f) for f in files])
    return parse_pack(merged, source_path=str(path))
