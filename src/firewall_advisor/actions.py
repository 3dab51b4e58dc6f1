"""Allow/Block actions on the firewall's alert window, and remote control.

``AppleScriptActions`` presses buttons on the target application through
System Events. ``RemoteControl`` forwards analyzed alerts to an external
notifier and turns replies such as ``allow always`` into those actions.
"""

import asyncio
import logging
import subprocess
import time
from dataclasses import dataclass, field
from typing import Callable, Protocol

from firewall_advisor.errors import WindowSourceError
from firewall_advisor.models import (
    ActionKind,
    AIAnalysis,
    ConnectionAlert,
    Recommendation,
    RuleDuration,
)
from firewall_advisor.windows import Runner, quote_applescript, run_osascript

logger = logging.getLogger(__name__)

RECOMMENDATION_EMOJI = {
    Recommendation.ALLOW: "✅",
    Recommendation.BLOCK: "\U0001f6ab",
    Recommendation.CAUTION: "⚠️",
    Recommendation.UNKNOWN: "❓",
}


class ActionPerformer(Protocol):
    def perform_action(self, kind: ActionKind, duration: RuleDuration) -> bool: ...


class AppleScriptActions:
    """Clicks the duration option and the Allow/Block button via osascript.

    Attributes:
        app_name: Process name of the firewall application.
    """

    def __init__(self, app_name: str = "LuLu", runner: Runner = subprocess.run) -> None:
        self.app_name = app_name
        self._runner = runner

    def perform_action(self, kind: ActionKind, duration: RuleDuration = RuleDuration.NONE) -> bool:
        """Press *kind* on the front alert window.

        Args:
            kind: Allow or Block.
            duration: Rule lifetime to select first; NONE leaves it as is.

        Returns:
            True if the button was clicked.
        """
        if duration is not RuleDuration.NONE:
            self._select_duration(duration)

        script = f"""
tell application "System Events"
    tell process {quote_applescript(self.app_name)}
        set frontmost to true
        delay 0.2
        try
            click button {quote_applescript(kind.value)} of window 1
            return "ok"
        on error errMsg
            return "error: " & errMsg
        end try
    end tell
end tell
"""
        try:
            output = run_osascript(script, runner=self._runner)
        except WindowSourceError as exc:
            logger.error("Failed to click %s: %s", kind.value, exc)
            return False
        if output != "ok":
            logger.error("Failed to click %s: %s", kind.value, output)
            return False
        logger.info("Clicked %s on %s alert", kind.value, self.app_name)
        return True

    def _select_duration(self, duration: RuleDuration) -> None:
        script = f"""
tell application "System Events"
    tell process {quote_applescript(self.app_name)}
        set frontmost to true
        delay 0.2
        try
            click radio button {quote_applescript(duration.value)} of window 1
        on error
            click radio button {quote_applescript(duration.value)} of group 1 of window 1
        end try
    end tell
end tell
"""
        try:
            run_osascript(script, runner=self._runner)
        except WindowSourceError as exc:
            logger.warning("Could not set duration to %s: %s", duration.value, exc)


def parse_reply(text: str) -> tuple[ActionKind | None, RuleDuration]:
    """Turn a remote reply into an action.

    Args:
        text: Reply such as "allow always", "allow process", "block" or
            "ignore".

    Returns:
        (action, duration). The action is None for "ignore".

    Raises:
        ValueError: If the reply is not recognised.
    """
    normalized = " ".join(text.lower().split())
    if normalized == "ignore":
        return None, RuleDuration.NONE
    if normalized == "block":
        return ActionKind.BLOCK, RuleDuration.NONE
    if normalized in ("allow", "allow always", "allow process"):
        if "always" in normalized:
            return ActionKind.ALLOW, RuleDuration.ALWAYS
        if "process" in normalized:
            return ActionKind.ALLOW, RuleDuration.PROCESS_LIFETIME
        return ActionKind.ALLOW, RuleDuration.NONE
    raise ValueError(f"Unknown action: {text!r}")


@dataclass
class PendingAlert:
    """An analyzed alert waiting for a remote decision.

    Attributes:
        alert: The alert.
        analysis: Its analysis.
        created_at: Monotonic timestamp of registration.
    """

    alert: ConnectionAlert
    analysis: AIAnalysis
    created_at: float = field(default_factory=time.monotonic)


def build_alert_message(alert: ConnectionAlert, analysis: AIAnalysis) -> str:
    """Format an alert and its analysis as a chat message."""
    emoji = RECOMMENDATION_EMOJI[analysis.recommendation]
    lines = [
        "\U0001f525 **Firewall Alert**",
        "",
        f"{emoji} AI Recommendation: **{analysis.recommendation.value}**"
        f" ({int(analysis.confidence * 100)}%)",
        "",
        "**Connection:**",
    ]
    if alert.process_name:
        lines.append(f"• Process: `{alert.process_name}`")
    if alert.process_path:
        lines.append(f"• Path: `{alert.process_path}`")
    if alert.process_args:
        lines.append(f"• Args: `{alert.process_args}`")
    lines.append(f"• Destination: `{alert.ip_address}:{alert.port}` ({alert.protocol})")
    if alert.reverse_dns:
        lines.append(f"• DNS: `{alert.reverse_dns}`")
    if alert.geo_location:
        lines.append(f"• Location: {alert.geo_location}")

    lines.append("")
    lines.append(f"**Analysis:** {analysis.summary}")
    if analysis.risks:
        lines.append(f"**Risks:** {', '.join(analysis.risks)}")

    lines.extend(
        [
            "",
            "**Reply with:**",
            "• `allow always` - Allow permanently",
            "• `allow process` - Allow for this process lifetime",
            "• `block` - Block this connection",
            "• `ignore` - Let me decide locally",
            "",
            f"(Alert ID: {alert.id[:8]})",
        ]
    )
    return "\n".join(lines)


class RemoteControl:
    """Pending-alert registry for remote allow/block decisions.

    Attributes:
        actions: Performs the chosen action on the firewall window.
        command: Notifier argument vector; ``{message}`` is substituted.
            Empty means alerts are only exposed through the HTTP API.
        stale_after: Seconds after which a pending alert is dropped.
    """

    def __init__(
        self,
        actions: ActionPerformer,
        command: list[str] | None = None,
        stale_after: float = 300.0,
        runner: Runner = subprocess.run,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.actions = actions
        self.command = list(command or [])
        self.stale_after = stale_after
        self._runner = runner
        self._clock = clock
        self._pending: dict[str, PendingAlert] = {}

    @property
    def enabled(self) -> bool:
        return bool(self.command)

    def register(self, alert: ConnectionAlert, analysis: AIAnalysis) -> PendingAlert:
        """Remember an analyzed alert so a later reply can resolve it."""
        self.cleanup_stale()
        pending = PendingAlert(alert=alert, analysis=analysis, created_at=self._clock())
        self._pending[alert.id] = pending
        return pending

    async def notify(self, alert: ConnectionAlert, analysis: AIAnalysis) -> bool:
        """Register the alert and send it through the notifier command.

        Returns:
            True if the notifier accepted the message.
        """
        self.register(alert, analysis)
        if not self.enabled:
            return False
        message = build_alert_message(alert, analysis)
        return await asyncio.to_thread(self._send, message)

    def _send(self, message: str) -> bool:
        argv = [part.replace("{message}", message) for part in self.command]
        try:
            result = self._runner(argv, capture_output=True, text=True, timeout=30)
        except (OSError, subprocess.TimeoutExpired) as exc:
            logger.error("Error sending alert to notifier: %s", exc)
            return False
        if result.returncode != 0:
            logger.error("Notifier rejected alert: %s", (result.stdout or result.stderr).strip())
            return False
        logger.info("Alert sent to notifier")
        return True

    def pending(self) -> list[PendingAlert]:
        """Return pending alerts, oldest first."""
        self.cleanup_stale()
        return sorted(self._pending.values(), key=lambda p: p.created_at)

    def find(self, alert_id_prefix: str) -> PendingAlert | None:
        prefix = alert_id_prefix.lower()
        if not prefix:
            return None
        for alert_id, pending in self._pending.items():
            if alert_id.lower().startswith(prefix):
                return pending
        return None

    def handle_response(self, alert_id_prefix: str, reply: str) -> bool:
        """Resolve a pending alert with a remote reply.

        Args:
            alert_id_prefix: Leading characters of the alert id.
            reply: Reply text, see :func:`parse_reply`.

        Returns:
            True if the reply was carried out (or was "ignore").
        """
        pending = self.find(alert_id_prefix)
        if pending is None:
            logger.warning("No pending alert found for ID: %s", alert_id_prefix)
            return False

        try:
            kind, duration = parse_reply(reply)
        except ValueError as exc:
            logger.warning("%s", exc)
            return False

        if kind is None:
            logger.info("Ignoring alert %s; operator will decide locally", pending.alert.id[:8])
            del self._pending[pending.alert.id]
            return True

        success = self.actions.perform_action(kind, duration)
        if success:
            del self._pending[pending.alert.id]
        return success

    def cleanup_stale(self) -> None:
        """Drop pending alerts older than ``stale_after`` seconds."""
        threshold = self._clock() - self.stale_after
        self._pending = {
            alert_id: pending
            for alert_id, pending in self._pending.items()
            if pending.created_at > threshold
        }
