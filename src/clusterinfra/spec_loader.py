"""Cluster document loading with validation.

SECURITY: File reads enforce a size limit and YAML is parsed with
``safe_load`` only.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any

import yaml
from pydantic import ValidationError

from .config import MAX_SPEC_FILE_SIZE_BYTES
from .models import Cluster

logger = logging.getLogger(__name__)


class SpecLoadError(Exception):
    """Raised when a cluster document cannot be loaded or fails validation."""

    pass


def read_yaml_mapping(path: Path) -> dict[str, Any]:
    """Read a size-limited YAML file that must contain a mapping.

    Raises:
        SpecLoadError: If the file is missing, too large, unreadable or not
            a YAML mapping.
    """
    if not path.exists():
        raise SpecLoadError(f"File not found: {path}")

    try:
        file_size = path.stat().st_size
    except OSError as e:
        raise SpecLoadError(f"Failed to stat {path}: {e}") from e

    if file_size > MAX_SPEC_FILE_SIZE_BYTES:
        raise SpecLoadError(
            f"File exceeds maximum size of {MAX_SPEC_FILE_SIZE_BYTES} bytes: {path}"
        )

    try:
        content = path.read_text(encoding="utf-8")
    except OSError as e:
        raise SpecLoadError(f"Failed to read {path}: {e}") from e

    try:
        raw_data = yaml.safe_load(content)
    except yaml.YAMLError as e:
        raise SpecLoadError(f"Invalid YAML in {path}: {e}") from e

    if not isinstance(raw_data, dict):
        raise SpecLoadError(f"File must contain a YAML mapping: {path}")
    return raw_data


def parse_cluster(data: dict[str, Any], source: str = "<document>") -> Cluster:
    """Validate a cluster mapping.

    Kubernetes-style documents (``apiVersion``/``metadata``/``spec``) are
    accepted too: the name is taken from ``metadata.name`` and the rest
    from ``spec``.
    """
    if "apiVersion" in data and "spec" in data:
        spec = data.get("spec") or {}
        metadata = data.get("metadata") or {}
        if not isinstance(spec, dict) or not isinstance(metadata, dict):
            raise SpecLoadError(f"spec and metadata sections must be mappings: {source}")
        data = {**spec, "name": metadata.get("name", spec.get("name"))}

    try:
        return Cluster.model_validate(data)
    except ValidationError as e:
        errors = []
        for error in e.errors():
            loc = ".".join(str(x) for x in error["loc"])
            errors.append(f"  - {loc}: {error['msg']}")
        error_list = "\n".join(errors)
        raise SpecLoadError(f"Validation failed for {source}:\n{error_list}") from e


def load_cluster(path: Path) -> Cluster:
    """Load and validate a cluster document from YAML.

    Raises:
        SpecLoadError: If the document cannot be loaded or fails validation.
    """
    cluster = parse_cluster(read_yaml_mapping(path), str(path))
    logger.info("Loaded cluster '%s' from %s", cluster.name, path)
    return cluster


def dump_cluster(cluster: Cluster) -> str:
    """Render a cluster as a YAML document readable by ``load_cluster``."""
    return yaml.safe_dump(cluster.to_document(), sort_keys=False, default_flow_style=False)
