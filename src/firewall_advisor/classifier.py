"""Pattern-based classification of raw alert-window strings.

The extracted fields only drive display and change detection; the advisory
model reads the raw texts itself, so a miss here is harmless.
"""

import re

from firewall_advisor.models import FieldKind

IPV4_RE = re.compile(r"^\d{1,3}\.\d{1,3}\.\d{1,3}\.\d{1,3}$")
PORT_PROTOCOL_RE = re.compile(r"^(\d{1,5}) \((TCP|UDP)\)$")
PID_RE = re.compile(r"^\d{4,6}$")
REVERSE_DNS_RE = re.compile(r"^[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}\.*$")


def classify(text: str) -> FieldKind:
    """Classify a raw UI string into a semantic field.

    Rules are applied in priority order and the first match wins, since
    some strings satisfy several weak patterns (a PID also looks like a
    port number, a hostname also looks like a path segment).

    Args:
        text: A string read from the alert window.

    Returns:
        The matching FieldKind, or FieldKind.NONE.
    """
    trimmed = text.strip()
    if not trimmed or trimmed.endswith(":"):
        return FieldKind.NONE
    if IPV4_RE.match(trimmed):
        return FieldKind.IPV4
    if PORT_PROTOCOL_RE.match(trimmed):
        return FieldKind.PORT_PROTOCOL
    if PID_RE.match(trimmed):
        return FieldKind.PID
    if trimmed.startswith("/") and "/" in trimmed[1:]:
        return FieldKind.FILESYSTEM_PATH
    if trimmed.startswith(("http://", "https://")):
        return FieldKind.URL
    if REVERSE_DNS_RE.match(trimmed) and not trimmed.startswith("/"):
        return FieldKind.REVERSE_DNS
    return FieldKind.NONE


def split_port_protocol(text: str) -> tuple[str, str]:
    """Split a ``"443 (TCP)"`` string into ``("443", "TCP")``.

    Returns ``("", "")`` when *text* is not a port/protocol string.
    """
    match = PORT_PROTOCOL_RE.match(text.strip())
    if match is None:
        return "", ""
    return match.group(1), match.group(2)


def path_basename(path: str) -> str:
    """Return the last non-empty segment of a filesystem path."""
    segments = [s for s in path.strip().split("/") if s]
    return segments[-1] if segments else ""
