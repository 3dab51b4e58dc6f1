"""Detect that the operator resolved an alert directly in the firewall UI."""

import asyncio
import logging
from typing import Callable

from firewall_advisor.config import DismissalSettings, TargetSettings
from firewall_advisor.errors import WindowSourceError
from firewall_advisor.windows import WindowSource

logger = logging.getLogger(__name__)

Size = tuple[float, float]


class DismissalWatcher:
    """Polls the alert window's size and reports when it went away.

    After a grace period the watcher records the window size as a
    baseline. The alert counts as dismissed once no qualifying window
    remains, or once the window shrank by more than ``shrink_delta`` in
    either dimension. The close callback only fires when the analysis is
    no longer running; until then the watcher just keeps polling.

    Attributes:
        source: Window enumeration backend.
        target: Identity of the watched application.
        settings: Timing and size thresholds.
        is_busy: Returns True while an analysis is in progress.
        on_dismissed: Called exactly once per arming when dismissal is acted on.
        baseline: Size recorded on the first observation, or None.
    """

    def __init__(
        self,
        source: WindowSource,
        is_busy: Callable[[], bool],
        on_dismissed: Callable[[], None],
        target: TargetSettings | None = None,
        settings: DismissalSettings | None = None,
    ) -> None:
        self.source = source
        self.is_busy = is_busy
        self.on_dismissed = on_dismissed
        self.target = target or TargetSettings()
        self.settings = settings or DismissalSettings()
        self.baseline: Size | None = None
        self._observed = False
        self._fired = False
        self._task: asyncio.Task | None = None

    @property
    def is_active(self) -> bool:
        return self._task is not None and not self._task.done()

    def arm(self) -> None:
        """Start (or restart) watching for the current alert."""
        self.stop()
        self._fired = False
        self._task = asyncio.get_running_loop().create_task(self._run())

    def stop(self) -> None:
        """Stop watching and forget the baseline."""
        if self._task is not None and self._task is not asyncio.current_task():
            self._task.cancel()
        self._task = None
        self.baseline = None
        self._observed = False

    async def _run(self) -> None:
        await asyncio.sleep(self.settings.grace_period)
        while True:
            size = await asyncio.to_thread(self.current_size)
            if self.observe(size):
                return
            await asyncio.sleep(self.settings.poll_interval)

    def current_size(self) -> Size | None:
        """Return the size of the first qualifying target window, if any."""
        try:
            windows = self.source.list_windows(self.target.app_name)
        except WindowSourceError as exc:
            logger.debug("Dismissal poll failed: %s", exc)
            return None
        for window in windows:
            if window.width > self.settings.min_width and window.height > self.settings.min_height:
                return (window.width, window.height)
        return None

    def is_dismissed(self, size: Size | None) -> bool:
        """Decide whether *size* means the alert is gone, relative to the baseline."""
        if size is None:
            return True
        if self.baseline is None:
            return False
        delta = self.settings.shrink_delta
        return (self.baseline[0] - size[0]) > delta or (self.baseline[1] - size[1]) > delta

    def observe(self, size: Size | None) -> bool:
        """Process one poll result.

        Args:
            size: Current window size, or None if no qualifying window.

        Returns:
            True if the close callback fired and the watcher stopped.
        """
        if self._fired:
            return True
        if not self._observed:
            self._observed = True
            if size is not None:
                self.baseline = size
                logger.debug("Dismissal baseline %sx%s", size[0], size[1])
                return False

        if not self.is_dismissed(size):
            return False
        if self.is_busy():
            logger.debug("Alert dismissed but analysis still running; waiting")
            return False

        logger.info("Alert resolved in the firewall UI; closing advisory")
        self.stop()
        self._fired = True
        self.on_dismissed()
        return True
