"""Build structured alerts from raw window text and detect new ones."""

import logging
from collections.abc import Iterable

from firewall_advisor.classifier import classify, path_basename, split_port_protocol
from firewall_advisor.models import ConnectionAlert, FieldKind

logger = logging.getLogger(__name__)

# Fewer raw texts than this (and no IP) usually means a half-rendered window.
MIN_RAW_TEXTS = 5


def dedupe(strings: Iterable[str]) -> list[str]:
    """Drop empty and repeated strings, keeping first-seen order."""
    seen: set[str] = set()
    result: list[str] = []
    for text in strings:
        if not text or text in seen:
            continue
        seen.add(text)
        result.append(text)
    return result


def extract(raw_strings: Iterable[str]) -> ConnectionAlert:
    """Build a ConnectionAlert from every string read off an alert window.

    IP address, PID and reverse DNS keep their first occurrence; port,
    path and URL arguments take the last one seen.

    Args:
        raw_strings: Strings in the order they were read.

    Returns:
        A new ConnectionAlert. Never raises on odd input.
    """
    texts = dedupe(raw_strings)
    fields: dict[str, str] = {
        "process_name": "",
        "process_path": "",
        "process_id": "",
        "process_args": "",
        "ip_address": "",
        "port": "",
        "protocol": "TCP",
        "reverse_dns": "",
    }

    for text in texts:
        trimmed = text.strip()
        kind = classify(trimmed)
        if kind is FieldKind.IPV4:
            if not fields["ip_address"]:
                fields["ip_address"] = trimmed
        elif kind is FieldKind.PORT_PROTOCOL:
            fields["port"], fields["protocol"] = split_port_protocol(trimmed)
        elif kind is FieldKind.PID:
            if not fields["process_id"]:
                fields["process_id"] = trimmed
        elif kind is FieldKind.FILESYSTEM_PATH:
            fields["process_path"] = trimmed
            name = path_basename(trimmed)
            if name:
                fields["process_name"] = name
        elif kind is FieldKind.URL:
            fields["process_args"] = trimmed
        elif kind is FieldKind.REVERSE_DNS:
            if not fields["reverse_dns"]:
                fields["reverse_dns"] = trimmed.strip(".")

    return ConnectionAlert(raw_texts=tuple(texts), **fields)


def has_data(alert: ConnectionAlert) -> bool:
    """Whether the alert carries enough information to be worth emitting."""
    return bool(alert.ip_address) or len(alert.raw_texts) > MIN_RAW_TEXTS


def is_distinct(candidate: ConnectionAlert, previous: ConnectionAlert | None) -> bool:
    """Compare the identifying fields of two alerts.

    Raw texts are deliberately ignored so that cosmetic changes inside the
    same alert window (a dropdown value, for instance) do not count.
    """
    if previous is None:
        return True
    return (
        candidate.ip_address != previous.ip_address
        or candidate.port != previous.port
        or candidate.process_name != previous.process_name
        or candidate.process_id != previous.process_id
    )


class AlertExtractor:
    """Stateful extractor that remembers the last emitted alert.

    Attributes:
        last_alert: The most recently emitted alert, or None.
    """

    def __init__(self) -> None:
        """Create an extractor that has not yet reported any alert."""
        self.last_alert: ConnectionAlert | None = None

    def observe(self, raw_strings: Iterable[str]) -> ConnectionAlert | None:
        """Extract an alert and return it only if it is new.

        Args:
            raw_strings: Strings read from the alert window on one poll.

        Returns:
            The new alert (which becomes ``last_alert``), or None when the
            poll carried too little data or matched the previous alert.
        """
        candidate = extract(raw_strings)
        if not has_data(candidate) or not is_distinct(candidate, self.last_alert):
            return None

        logger.debug(
            "Extracted %d text elements; ip=%s port=%s process=%s",
            len(candidate.raw_texts),
            candidate.ip_address,
            candidate.port,
            candidate.process_name,
        )
        self.last_alert = candidate
        return candidate

    def reset(self) -> None:
        """Forget the last alert so the next poll is always treated as new."""
        self.last_alert = None
