"""Polling watcher that detects new firewall alert windows."""

import asyncio
import logging
from collections import defaultdict
from typing import Any, Callable

from firewall_advisor.config import MonitorSettings, TargetSettings
from firewall_advisor.errors import WindowSourceError
from firewall_advisor.extractor import AlertExtractor
from firewall_advisor.models import ConnectionAlert
from firewall_advisor.windows import PermissionChecker, WindowSource

logger = logging.getLogger(__name__)


class WindowWatcher:
    """Polls the target application for alert windows.

    Idle until :meth:`start` succeeds, then scans once per poll interval
    until :meth:`stop`. Each scan finishes before the next one is
    scheduled, so ticks never overlap.

    Attributes:
        source: Window enumeration backend.
        permissions: Permission checker gating :meth:`start`.
        extractor: Builds alerts and remembers the last one emitted.
        target: Identity of the watched application.
        interval: Seconds between scans.
        callbacks: Registered event callbacks.
    """

    def __init__(
        self,
        source: WindowSource,
        permissions: PermissionChecker,
        target: TargetSettings | None = None,
        monitor: MonitorSettings | None = None,
        extractor: AlertExtractor | None = None,
    ) -> None:
        """Initialize the watcher.

        Args:
            source: Window enumeration backend.
            permissions: Accessibility permission checker.
            target: Watched application. Defaults to LuLu.
            monitor: Poll settings. Defaults to MonitorSettings().
            extractor: Alert extractor. A fresh one is created if omitted.
        """
        self.source = source
        self.permissions = permissions
        self.target = target or TargetSettings()
        self.interval = (monitor or MonitorSettings()).poll_interval
        self.extractor = extractor or AlertExtractor()
        self.callbacks: dict[str, list[Callable]] = defaultdict(list)
        self._task: asyncio.Task | None = None

    @property
    def is_monitoring(self) -> bool:
        return self._task is not None and not self._task.done()

    def on(self, event: str, callback: Callable) -> None:
        """Register a callback for an event.

        Args:
            event: Event name ("alert", "started", "stopped").
            callback: Function to call when the event fires.
        """
        self.callbacks[event].append(callback)

    def _emit(self, event: str, data: Any) -> None:
        for callback in self.callbacks.get(event, []):
            callback(data)

    def start(self) -> bool:
        """Begin polling on the running event loop.

        Returns:
            True if monitoring is active, False if permission is missing.
        """
        if self.is_monitoring:
            return True
        if not self.permissions.check():
            logger.warning("Accessibility permission not granted; not monitoring")
            return False

        self._task = asyncio.get_running_loop().create_task(self._run())
        logger.info(
            "Started monitoring %s for '%s' windows",
            self.target.app_name,
            self.target.title_marker,
        )
        self._emit("started", self)
        return True

    async def stop(self) -> None:
        """Stop polling and wait for the in-flight scan to finish."""
        task, self._task = self._task, None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        logger.info("Stopped monitoring")
        self._emit("stopped", self)

    async def _run(self) -> None:
        while True:
            await self.poll_once()
            await asyncio.sleep(self.interval)

    async def poll_once(self) -> ConnectionAlert | None:
        """Run one scan and emit ``alert`` if a new alert is visible.

        Returns:
            The newly detected alert, or None.
        """
        texts = await asyncio.to_thread(self.read_alert_texts)
        if texts is None:
            return None

        alert = self.extractor.observe(texts)
        if alert is None:
            return None

        logger.info(
            "Detected alert: %s -> %s",
            alert.process_name or "?",
            alert.destination or "?",
        )
        self._emit("alert", alert)
        return alert

    def read_alert_texts(self) -> list[str] | None:
        """Read the text of the first alert window, if there is one.

        Enumeration failures are transient: they are logged and treated as
        "no alert this cycle".
        """
        target = self.target
        try:
            if not self.source.is_running(target.app_name, target.bundle_id):
                return None
            for window in self.source.list_windows(target.app_name):
                if target.title_marker in window.title:
                    return self.source.read_all_text(window)
        except WindowSourceError as exc:
            logger.debug("Window scan failed: %s", exc)
        return None
