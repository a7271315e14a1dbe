"""Persistence of the local store between runs."""

import json
import logging
import os
from pathlib import Path
from typing import Any, Optional

from pydantic import ValidationError

from .models import CURRENT_SCHEMA_VERSION, PersistedState

logger = logging.getLogger(__name__)


def _migrate_v1(data: dict[str, Any]) -> dict[str, Any]:
    """Version 1 files had no version tag and stored the language as ``lang``."""
    migrated = dict(data)
    if "lang" in migrated and "language" not in migrated:
        migrated["language"] = migrated.pop("lang")
    migrated["schemaVersion"] = 2
    return migrated


MIGRATIONS = {
    1: _migrate_v1,
}


class StateStorage:
    """Manages the persisted subset of the store: user, token, cart, wishlist,
    addresses and language. Orders are never written here."""

    def __init__(self, state_file: Optional[str] = None) -> None:
        """
        Initialize the state storage.

        Args:
            state_file: Path to the state file. Defaults to BAZAAR_STATE_FILE
                or ~/.bazaar_state.json
        """
        if state_file is None:
            state_file = os.environ.get("BAZAAR_STATE_FILE") or str(
                Path.home() / ".bazaar_state.json"
            )
        self.state_file = state_file

    def load(self) -> PersistedState:
        """Load persisted state, or a blank guest state if there is none."""
        if not os.path.exists(self.state_file):
            return PersistedState()

        try:
            with open(self.state_file, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            logger.warning(f"Could not read state file {self.state_file}: {e}")
            return PersistedState()

        if not isinstance(data, dict):
            logger.warning(f"Ignoring malformed state file {self.state_file}")
            return PersistedState()

        version = data.get("schemaVersion", 1)
        if not isinstance(version, int) or version > CURRENT_SCHEMA_VERSION:
            logger.warning(
                f"State file {self.state_file} has unsupported schema version {version}; "
                "starting a fresh session"
            )
            return PersistedState()

        while version < CURRENT_SCHEMA_VERSION:
            data = MIGRATIONS[version](data)
            version = data["schemaVersion"]
            logger.info(f"Migrated state file to schema version {version}")

        try:
            state = PersistedState.model_validate(data)
        except ValidationError as e:
            logger.warning(f"Ignoring invalid state file {self.state_file}: {e}")
            return PersistedState()

        logger.info(f"Loaded saved state from {self.state_file}")
        return state

    def save(self, state: PersistedState) -> None:
        """Write state to disk with owner-only permissions."""
        tmp_file = f"{self.state_file}.tmp"
        with open(tmp_file, "w", encoding="utf-8") as f:
            json.dump(state.to_wire(), f, ensure_ascii=False, indent=2)
        os.chmod(tmp_file, 0o600)
        os.replace(tmp_file, self.state_file)

    def clear(self) -> None:
        """Delete the state file."""
        if os.path.exists(self.state_file):
            os.remove(self.state_file)
            logger.info("Saved state cleared")
