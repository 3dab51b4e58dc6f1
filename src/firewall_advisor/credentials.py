"""Credential storage and the ordered credential list used for failover."""

import json
import logging
import os
from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path
from typing import Protocol

from firewall_advisor.providers import mask

logger = logging.getLogger(__name__)

PRIMARY_SLOT_NAME = "api_key"


def slot_name(slot: int) -> str:
    """Return the store key for a slot (0 is the primary slot)."""
    return PRIMARY_SLOT_NAME if slot == 0 else f"{PRIMARY_SLOT_NAME}_{slot}"


def clean_key(value: str) -> str:
    """Remove every whitespace character (pasted keys often wrap)."""
    return "".join(value.split())


class CredentialStore(Protocol):
    def get(self, name: str) -> str | None: ...

    def save(self, name: str, value: str) -> None: ...

    def delete(self, name: str) -> None: ...


class JSONCredentialStore:
    """Key/value store persisted as a JSON object readable only by its owner.

    Attributes:
        path: Location of the JSON file.
    """

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path).expanduser()

    def _read(self) -> dict[str, str]:
        try:
            with open(self.path) as f:
                data = json.load(f)
        except FileNotFoundError:
            return {}
        except (OSError, json.JSONDecodeError) as exc:
            logger.warning("Ignoring unreadable key file %s: %s", self.path, exc)
            return {}
        if not isinstance(data, dict):
            return {}
        return {str(k): str(v) for k, v in data.items()}

    def _write(self, data: dict[str, str]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self.path.with_suffix(self.path.suffix + ".tmp")
        fd = os.open(tmp, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
        with os.fdopen(fd, "w") as f:
            json.dump(data, f, indent=2)
        os.chmod(tmp, 0o600)
        os.replace(tmp, self.path)

    def get(self, name: str) -> str | None:
        value = self._read().get(name)
        return value or None

    def save(self, name: str, value: str) -> None:
        data = self._read()
        data[name] = value
        self._write(data)

    def delete(self, name: str) -> None:
        data = self._read()
        if data.pop(name, None) is not None:
            self._write(data)


@dataclass(frozen=True)
class KeySlot:
    """A filled store slot, as listed to the user.

    Attributes:
        slot: Slot number (0 is the primary slot).
        prefix: Masked prefix of the stored key.
    """

    slot: int
    prefix: str


class CredentialRing:
    """Ordered credential list: environment first, then stored slots.

    The store is re-read on every call, so keys added or removed by the
    user take effect on the next analysis.

    Attributes:
        store: Backing credential store.
        env_vars: Environment variables consulted, in order.
        backup_slots: Number of backup slots after the primary one.
    """

    def __init__(
        self,
        store: CredentialStore,
        env_vars: list[str] | None = None,
        backup_slots: int = 5,
        environ: Mapping[str, str] | None = None,
    ) -> None:
        self.store = store
        self.env_vars = env_vars if env_vars is not None else ["ANTHROPIC_API_KEY"]
        self.backup_slots = backup_slots
        self._environ = environ if environ is not None else os.environ

    def slots(self) -> range:
        return range(0, self.backup_slots + 1)

    def env_source(self) -> str | None:
        """Return the first environment variable that holds a credential."""
        for name in self.env_vars:
            if self._environ.get(name):
                return name
        return None

    def credentials(self) -> list[str]:
        """Return every configured credential in priority order, deduplicated."""
        keys: list[str] = []
        for name in self.env_vars:
            value = self._environ.get(name, "")
            if value and value not in keys:
                keys.append(value)
        for slot in self.slots():
            value = self.store.get(slot_name(slot))
            if value and value not in keys:
                keys.append(value)
        return keys

    def __len__(self) -> int:
        return len(self.credentials())

    def next_available_slot(self) -> int:
        """Return the first empty slot, or 0 (overwrite primary) if all are full."""
        for slot in self.slots():
            if self.store.get(slot_name(slot)) is None:
                return slot
        return 0

    def add(self, value: str, slot: int | None = None) -> int:
        """Store a key.

        Args:
            value: The key; all whitespace is stripped first.
            slot: Target slot, or None for the next available one.

        Returns:
            The slot the key was written to.

        Raises:
            ValueError: If the key is empty after cleaning or the slot is
                out of range.
        """
        cleaned = clean_key(value)
        if not cleaned:
            raise ValueError("Key is empty after removing whitespace")
        if slot is None:
            slot = self.next_available_slot()
        if slot not in self.slots():
            raise ValueError(f"Slot must be between 0 and {self.backup_slots}, got {slot}")

        self.store.save(slot_name(slot), cleaned)
        logger.info("Saved key to slot %d: %s", slot, mask(cleaned))
        return slot

    def remove(self, slot: int = 0) -> None:
        """Delete the key in *slot* (missing keys are ignored)."""
        if slot not in self.slots():
            raise ValueError(f"Slot must be between 0 and {self.backup_slots}, got {slot}")
        self.store.delete(slot_name(slot))
        logger.info("Removed key from slot %d", slot)

    def list_slots(self) -> list[KeySlot]:
        """Return the filled slots in slot order."""
        filled = []
        for slot in self.slots():
            value = self.store.get(slot_name(slot))
            if value:
                filled.append(KeySlot(slot=slot, prefix=mask(value)))
        return filled
