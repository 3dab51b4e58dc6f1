"""Bounded, append-only history of analyses."""

import json
import logging
import os
from pathlib import Path

from firewall_advisor.config import HISTORY_MAX, HISTORY_MIN
from firewall_advisor.models import AIAnalysis, ConnectionAlert, HistoryEntry

logger = logging.getLogger(__name__)


class HistoryStore:
    """Append-only history trimmed to a maximum size, oldest first.

    Attributes:
        max_count: Maximum number of entries kept.
        path: Optional JSON file the history is persisted to.
    """

    def __init__(self, max_count: int = 100, path: str | Path | None = None) -> None:
        """Initialize the store and load any persisted entries.

        Args:
            max_count: Maximum number of entries, clamped to 10..1000.
            path: JSON file to persist to, or None to keep history in memory.
        """
        self.max_count = min(HISTORY_MAX, max(HISTORY_MIN, max_count))
        self.path = Path(path).expanduser() if path else None
        self._entries: list[HistoryEntry] = []
        if self.path is not None:
            self.load()

    def record(
        self,
        alert: ConnectionAlert,
        analysis: AIAnalysis,
        model: str | None = None,
    ) -> HistoryEntry:
        """Snapshot an (alert, analysis) pair and append it.

        Args:
            alert: The alert that was analyzed.
            analysis: The analysis result.
            model: Model that produced the analysis, if known.

        Returns:
            The newly created HistoryEntry.

        Raises:
            OSError: If the history file cannot be written. The entry is
                kept in memory.
        """
        entry = HistoryEntry(
            process_name=alert.process_name,
            process_path=alert.process_path,
            ip_address=alert.ip_address,
            port=alert.port,
            protocol=alert.protocol,
            reverse_dns=alert.reverse_dns,
            recommendation=analysis.recommendation.value,
            confidence=analysis.confidence,
            summary=analysis.summary,
            details=analysis.details,
            risks=tuple(analysis.risks),
            known_service=analysis.known_service,
            model=model or analysis.model,
        )
        self._entries.append(entry)
        self._trim()
        self._persist()
        return entry

    def entries(self) -> list[HistoryEntry]:
        """Return all entries, oldest first."""
        return list(self._entries)

    def __len__(self) -> int:
        return len(self._entries)

    def clear(self) -> None:
        """Remove every entry."""
        self._entries.clear()
        self._persist()

    def load(self) -> None:
        """Replace the in-memory entries with the persisted ones.

        An unreadable file is logged and treated as empty history.
        """
        if self.path is None or not self.path.exists():
            return
        try:
            with open(self.path) as f:
                raw = json.load(f)
            self._entries = [HistoryEntry.from_dict(item) for item in raw]
        except (OSError, ValueError, KeyError, TypeError) as exc:
            logger.warning("Ignoring unreadable history file %s: %s", self.path, exc)
            self._entries = []
        self._trim()

    def _trim(self) -> None:
        excess = len(self._entries) - self.max_count
        if excess > 0:
            del self._entries[:excess]

    def _persist(self) -> None:
        if self.path is None:
            return
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self.path.with_suffix(self.path.suffix + ".tmp")
        try:
            with open(tmp, "w") as f:
                json.dump([entry.to_dict() for entry in self._entries], f, indent=2)
            os.replace(tmp, self.path)
        except OSError:
            tmp.unlink(missing_ok=True)
            raise
