"""Snapshot loading from YAML and JSON files.

Snapshots are produced by whatever tool introspects the live databases; this
module only turns their serialized form into :class:`SchemaDefinition`
objects, validating the structure on the way in.
"""

from abc import ABC, abstractmethod
from dataclasses import replace
import json
from pathlib import Path
from typing import Any

from pydantic import TypeAdapter, ValidationError
import yaml

from ..core.logging import get_logger
from .models import SchemaDefinition, SnapshotLoadError

logger = get_logger(__name__)

_SNAPSHOT_ADAPTER = TypeAdapter(SchemaDefinition)
_DERIVED_COLLECTIONS = ("triggers", "indexes", "policies")


def load_snapshot_data(data: dict[str, Any], source: str | None = None) -> SchemaDefinition:
    """Validate an in-memory snapshot mapping.

    Top-level ``triggers``, ``indexes`` and ``policies`` are derived from the
    tables when the mapping omits them.

    Raises:
        SnapshotLoadError: If the mapping does not describe a valid snapshot
    """
    if not isinstance(data, dict):
        raise SnapshotLoadError(
            f"Snapshot must be a mapping, got {type(data).__name__}", source
        )

    try:
        snapshot = _SNAPSHOT_ADAPTER.validate_python(data)
    except ValidationError as e:
        raise SnapshotLoadError(f"Invalid snapshot: {e}", source) from e

    derived = {
        name: tuple(item for table in snapshot.tables for item in getattr(table, name))
        for name in _DERIVED_COLLECTIONS
        if name not in data
    }
    if derived:
        snapshot = replace(snapshot, **derived)

    return snapshot


class SnapshotLoader(ABC):
    """Abstract interface for snapshot loaders."""

    @abstractmethod
    async def load(self, location: str | Path) -> SchemaDefinition:
        """Load the snapshot stored at ``location``."""
        pass


class FileSnapshotLoader(SnapshotLoader):
    """Loads snapshots from ``.yaml``, ``.yml`` or ``.json`` files."""

    SUPPORTED_SUFFIXES = (".yaml", ".yml", ".json")

    async def load(self, location: str | Path) -> SchemaDefinition:
        """Load and validate a snapshot file.

        Args:
            location: Path to the snapshot file

        Returns:
            The validated snapshot

        Raises:
            SnapshotLoadError: If the file is missing, unparseable or invalid
        """
        path = Path(location)
        if not path.exists():
            raise SnapshotLoadError(f"Snapshot file does not exist: {path}", str(path))
        if path.suffix.lower() not in self.SUPPORTED_SUFFIXES:
            raise SnapshotLoadError(
                f"Unsupported snapshot format '{path.suffix}' "
                f"(expected one of {', '.join(self.SUPPORTED_SUFFIXES)})",
                str(path),
            )

        try:
            with path.open(encoding="utf-8") as f:
                if path.suffix.lower() == ".json":
                    data = json.load(f)
                else:
                    data = yaml.safe_load(f)
        except (OSError, UnicodeDecodeError, json.JSONDecodeError, yaml.YAMLError) as e:
            raise SnapshotLoadError(
                f"Failed to read snapshot '{path.name}': {e}", str(path)
            ) from e

        snapshot = load_snapshot_data(data, str(path))
        logger.debug(
            "Snapshot loaded",
            path=str(path),
            tables=len(snapshot.tables),
            functions=len(snapshot.functions),
        )
        return snapshot
