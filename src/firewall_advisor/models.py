"""Data models for the firewall advisor.

Alerts, analyses and history snapshots shared by every component. Only
stdlib imports, and no behaviour beyond formatting helpers.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any
from uuid import uuid4


class Recommendation(Enum):
    """Advisory verdict for a connection alert."""

    ALLOW = "Allow"
    BLOCK = "Block"
    CAUTION = "Caution"
    UNKNOWN = "Unknown"

    @classmethod
    def parse(cls, text: Any) -> "Recommendation":
        """Map free text to a recommendation, case-insensitively.

        Anything that is not a string naming ALLOW, BLOCK or CAUTION
        becomes UNKNOWN.
        """
        if not isinstance(text, str):
            return cls.UNKNOWN
        for member in (cls.ALLOW, cls.BLOCK, cls.CAUTION):
            if text.strip().upper() == member.name:
                return member
        return cls.UNKNOWN


class FieldKind(Enum):
    """Semantic field a raw UI string was classified as."""

    IPV4 = "ipv4"
    PORT_PROTOCOL = "port_protocol"
    PID = "pid"
    FILESYSTEM_PATH = "filesystem_path"
    URL = "url"
    REVERSE_DNS = "reverse_dns"
    NONE = "none"


class ActionKind(Enum):
    """Button to press on the target application's alert window."""

    ALLOW = "Allow"
    BLOCK = "Block"


class RuleDuration(Enum):
    """Rule lifetime option offered by the alert window."""

    ALWAYS = "Always"
    PROCESS_LIFETIME = "Process lifetime"
    NONE = "none"


@dataclass(frozen=True)
class ConnectionAlert:
    """One detected firewall prompt.

    Instances are never edited in place; enrichment produces a copy with
    ``dataclasses.replace``.

    Attributes:
        process_name: Display name (last segment of the process path).
        process_path: Filesystem path of the connecting process.
        process_id: Process identifier as shown by the alert.
        process_args: URL-shaped process arguments, if any.
        ip_address: Destination IPv4 address, or "".
        port: Destination port, or "".
        protocol: "TCP" or "UDP".
        reverse_dns: Reverse DNS name of the destination, or "".
        geo_location: Location label filled by enrichment.
        whois_data: Network owner label filled by enrichment.
        raw_texts: Every UI string observed, deduplicated, first-seen order.
        id: Unique identifier for this alert occurrence.
        detected_at: When the alert was detected.
    """

    process_name: str = ""
    process_path: str = ""
    process_id: str = ""
    process_args: str = ""
    ip_address: str = ""
    port: str = ""
    protocol: str = "TCP"
    reverse_dns: str = ""
    geo_location: str | None = None
    whois_data: str | None = None
    raw_texts: tuple[str, ...] = ()
    id: str = field(default_factory=lambda: str(uuid4()))
    detected_at: datetime = field(default_factory=datetime.now)

    @property
    def destination(self) -> str:
        """Return ``ip:port`` or whatever part of it is known."""
        if self.ip_address and self.port:
            return f"{self.ip_address}:{self.port}"
        return self.ip_address or self.port

    @property
    def display_host(self) -> str:
        """Return the reverse DNS name if known, else the IP address."""
        return self.reverse_dns or self.ip_address

    def prompt_description(self) -> str:
        """Describe the alert as plain text for an advisory prompt."""
        lines = ["Connection details:"]
        fields = [
            ("Process", self.process_name),
            ("Path", self.process_path),
            ("PID", self.process_id),
            ("Arguments", self.process_args),
            ("IP address", self.ip_address),
            ("Port", self.port),
            ("Protocol", self.protocol),
            ("Reverse DNS", self.reverse_dns),
            ("Location", self.geo_location or ""),
            ("WHOIS", self.whois_data or ""),
        ]
        for label, value in fields:
            if value:
                lines.append(f"- {label}: {value}")
        if self.raw_texts:
            lines.append("")
            lines.append("Raw text from the firewall alert window:")
            lines.extend(f"- {text}" for text in self.raw_texts)
        return "\n".join(lines)


@dataclass
class AIAnalysis:
    """Result of one advisory analysis.

    Attributes:
        recommendation: The advisory verdict.
        confidence: Model confidence clamped to 0.0-1.0.
        summary: One-line summary, never empty once returned.
        details: Longer explanation (or the raw completion on fallback).
        risks: Ordered list of risk notes.
        known_service: Service the model recognised, if any.
        source_alert: The alert this analysis is about.
        model: Wire model identifier that produced the analysis.
    """

    recommendation: Recommendation = Recommendation.UNKNOWN
    confidence: float = 0.5
    summary: str = ""
    details: str = ""
    risks: list[str] = field(default_factory=list)
    known_service: str | None = None
    source_alert: ConnectionAlert | None = None
    model: str | None = None


@dataclass(frozen=True)
class WindowInfo:
    """A top-level window owned by the target application.

    Attributes:
        title: Window title.
        width: Window width in screen units.
        height: Window height in screen units.
        handle: Opaque backend reference used to read the window's text.
    """

    title: str
    width: float = 0.0
    height: float = 0.0
    handle: Any = field(default=None, compare=False)


@dataclass(frozen=True)
class HistoryEntry:
    """An immutable snapshot of one (alert, analysis) pair.

    Attributes:
        process_name: Process that opened the connection.
        process_path: Path of that process.
        ip_address: Destination address.
        port: Destination port.
        protocol: Transport protocol.
        reverse_dns: Reverse DNS name of the destination.
        recommendation: Verdict value (e.g. "Block").
        confidence: Model confidence.
        summary: One-line summary.
        details: Longer explanation.
        risks: Risk notes.
        known_service: Recognised service, if any.
        model: Model that produced the analysis.
        id: Unique entry identifier (UUID4).
        timestamp: When the entry was recorded.
    """

    process_name: str
    process_path: str
    ip_address: str
    port: str
    protocol: str
    reverse_dns: str
    recommendation: str
    confidence: float
    summary: str
    details: str
    risks: tuple[str, ...] = ()
    known_service: str | None = None
    model: str | None = None
    id: str = field(default_factory=lambda: str(uuid4()))
    timestamp: datetime = field(default_factory=datetime.now)

    @property
    def display_host(self) -> str:
        return self.reverse_dns or self.ip_address

    def to_dict(self) -> dict[str, Any]:
        """Serialize the entry to a JSON-compatible dict."""
        return {
            "id": self.id,
            "timestamp": self.timestamp.isoformat(),
            "process_name": self.process_name,
            "process_path": self.process_path,
            "ip_address": self.ip_address,
            "port": self.port,
            "protocol": self.protocol,
            "reverse_dns": self.reverse_dns,
            "recommendation": self.recommendation,
            "confidence": self.confidence,
            "summary": self.summary,
            "details": self.details,
            "risks": list(self.risks),
            "known_service": self.known_service,
            "model": self.model,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "HistoryEntry":
        """Rebuild an entry from :meth:`to_dict` output."""
        return cls(
            id=data["id"],
            timestamp=datetime.fromisoformat(data["timestamp"]),
            process_name=data.get("process_name", ""),
            process_path=data.get("process_path", ""),
            ip_address=data.get("ip_address", ""),
            port=data.get("port", ""),
            protocol=data.get("protocol", "TCP"),
            reverse_dns=data.get("reverse_dns", ""),
            recommendation=data.get("recommendation", "Unknown"),
            confidence=float(data.get("confidence", 0.5)),
            summary=data.get("summary", ""),
            details=data.get("details", ""),
            risks=tuple(data.get("risks", [])),
            known_service=data.get("known_service"),
            model=data.get("model"),
        )
