"""Supplier definitions loader.

Loads supplier source definitions from YAML. Each entry names the parser
kind to use and where its list is published.
"""

from __future__ import annotations

import logging
from pathlib import Path

import yaml
from pydantic import ValidationError

from fabricsync.models import SupplierSpec
from fabricsync.parsers import PARSER_REGISTRY

logger = logging.getLogger(__name__)


def load_supplier_specs(config_path: Path, include_disabled: bool = False) -> list[SupplierSpec]:
    """Load supplier definitions.

    Args:
        config_path: Path to YAML configuration file
        include_disabled: Also return entries with ``enabled: false``

    Returns:
        Valid supplier specs; malformed entries are logged and skipped

    Raises:
        FileNotFoundError: If config file doesn't exist
        ValueError: If config has no 'suppliers' section
    """
    if not config_path.exists():
        raise FileNotFoundError(f"Suppliers config not found: {config_path}")

    with open(config_path, encoding="utf-8") as f:
        config = yaml.safe_load(f)

    if not config or "suppliers" not in config:
        raise ValueError("Invalid suppliers config: missing 'suppliers' section")

    specs = []

    for entry in config["suppliers"]:
        name = entry.get("name") if isinstance(entry, dict) else None
        try:
            spec = SupplierSpec.model_validate(entry)
        except ValidationError as e:
            logger.error(f"Failed to load supplier {name}: {e}")
            continue

        if spec.kind not in PARSER_REGISTRY:
            logger.error(f"Failed to load supplier {spec.name}: unknown kind '{spec.kind}'")
            continue

        if not spec.enabled and not include_disabled:
            logger.info(f"Skipping disabled supplier: {spec.name}")
            continue

        specs.append(spec)
        logger.info(f"Loaded supplier: {spec.name} ({spec.kind}, {spec.source.type})")

    logger.info(f"Loaded {len(specs)} suppliers from config")

    return specs
