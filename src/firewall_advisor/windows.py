"""Window and UI-text collaborators consumed by the watchers.

The watchers only depend on the narrow protocols defined here. Two
backends are provided: ``SystemEventsSource`` drives macOS System Events
through ``osascript``, and ``FixtureWindowSource`` serves windows described
in YAML for demos and tests.
"""

import logging
import subprocess
from collections.abc import Callable, Iterable
from pathlib import Path
from typing import Any, Protocol

import yaml

from firewall_advisor.errors import WindowSourceError
from firewall_advisor.models import WindowInfo

logger = logging.getLogger(__name__)

TEXT_ATTRIBUTES = ("value", "title", "description", "help")

OSASCRIPT = "/usr/bin/osascript"
ACCESSIBILITY_PANE = (
    "x-apple.systempreferences:com.apple.preference.security?Privacy_Accessibility"
)


class PermissionChecker(Protocol):
    def check(self) -> bool: ...

    def request(self) -> None: ...


class WindowSource(Protocol):
    def is_running(self, app_name: str, bundle_id: str) -> bool: ...

    def list_windows(self, owner: str) -> list[WindowInfo]: ...

    def read_all_text(self, window: WindowInfo) -> list[str]: ...


class ElementTree(Protocol):
    def children(self, element: Any) -> Iterable[Any]: ...

    def attribute(self, element: Any, name: str) -> Any: ...


def collect_texts(tree: ElementTree, root: Any) -> list[str]:
    """Collect every text attribute from an element subtree.

    Walks the tree with an explicit stack (pre-order, children in their
    natural order) so pathological trees cannot exhaust the call stack.
    Each element is visited once even if the backend hands the same
    element object back under several parents.

    Args:
        tree: Accessor for children and attributes.
        root: The element to start from (usually the window).

    Returns:
        Non-empty text values, deduplicated by exact match, first-seen order.
    """
    texts: list[str] = []
    seen_texts: set[str] = set()
    visited: set[int] = set()
    stack = [root]

    while stack:
        element = stack.pop()
        if id(element) in visited:
            continue
        visited.add(id(element))

        for name in TEXT_ATTRIBUTES:
            value = tree.attribute(element, name)
            if isinstance(value, str) and value and value not in seen_texts:
                seen_texts.add(value)
                texts.append(value)

        stack.extend(reversed(list(tree.children(element))))

    return texts


class StaticPermission:
    """Permission checker with a fixed answer (non-macOS runs, tests)."""

    def __init__(self, granted: bool = True) -> None:
        self.granted = granted

    def check(self) -> bool:
        return self.granted

    def request(self) -> None:
        logger.info("Permission request ignored: static permission=%s", self.granted)


class FixtureWindowSource:
    """Window source backed by nested element mappings.

    Each element is a mapping that may carry ``value``, ``title``,
    ``description``, ``help`` and ``children``. A window's handle is its
    root element.

    Attributes:
        app_name: Name reported as the running target application.
        running: Whether the target application is considered running.
    """

    def __init__(self, app_name: str = "LuLu", running: bool = True) -> None:
        self.app_name = app_name
        self.running = running
        self._windows: list[WindowInfo] = []

    @classmethod
    def load_alerts(cls, path: str | Path) -> list[dict[str, Any]]:
        """Read alert window descriptions from a YAML fixture file.

        Raises:
            ValueError: If the file has no ``alerts`` list.
        """
        with open(path) as f:
            data = yaml.safe_load(f)
        if not isinstance(data, dict) or not isinstance(data.get("alerts"), list):
            raise ValueError("Fixture file must contain an 'alerts' list")
        return data["alerts"]

    def push_window(
        self,
        title: str,
        root: dict[str, Any],
        width: float = 800.0,
        height: float = 600.0,
    ) -> WindowInfo:
        """Show a new window in front of the existing ones."""
        window = WindowInfo(title=title, width=width, height=height, handle=root)
        self._windows.insert(0, window)
        return window

    def push_alert(self, alert: dict[str, Any]) -> WindowInfo:
        """Show a window described by one entry of a fixture file."""
        root = {"title": alert.get("title", ""), "children": alert.get("elements", [])}
        return self.push_window(
            title=alert.get("title", ""),
            root=root,
            width=float(alert.get("width", 800)),
            height=float(alert.get("height", 600)),
        )

    def resize(self, window: WindowInfo, width: float, height: float) -> WindowInfo:
        """Replace *window* with a resized copy and return the copy."""
        index = self._windows.index(window)
        resized = WindowInfo(title=window.title, width=width, height=height, handle=window.handle)
        self._windows[index] = resized
        return resized

    def clear(self) -> None:
        """Close every window."""
        self._windows.clear()

    def is_running(self, app_name: str, bundle_id: str) -> bool:
        """True when the fixture app is running under *app_name*."""
        return self.running and app_name == self.app_name

    def list_windows(self, owner: str) -> list[WindowInfo]:
        """Return the open windows, front-most first."""
        if not self.running or owner != self.app_name:
            return []
        return list(self._windows)

    def read_all_text(self, window: WindowInfo) -> list[str]:
        """Collect the text of every element under *window*."""
        return collect_texts(self, window.handle)

    def children(self, element: Any) -> Iterable[Any]:
        """Return the child mappings of *element*."""
        return element.get("children", []) or []

    def attribute(self, element: Any, name: str) -> Any:
        """Return the *name* attribute of *element*, or None."""
        return element.get(name)


Runner = Callable[..., subprocess.CompletedProcess]


def run_osascript(script: str, runner: Runner = subprocess.run, timeout: float = 5.0) -> str:
    """Run an AppleScript snippet and return its stripped stdout.

    Raises:
        WindowSourceError: If osascript is missing, times out or fails.
    """
    try:
        result = runner(
            [OSASCRIPT, "-e", script],
            capture_output=True,
            text=True,
            timeout=timeout,
        )
    except (OSError, subprocess.TimeoutExpired) as exc:
        raise WindowSourceError(f"osascript failed: {exc}") from exc
    if result.returncode != 0:
        raise WindowSourceError(f"osascript exited {result.returncode}: {result.stderr.strip()}")
    return result.stdout.strip()


def quote_applescript(text: str) -> str:
    """Return *text* as an AppleScript string literal."""
    return '"' + text.replace("\\", "\\\\").replace('"', '\\"') + '"'


class SystemEventsPermission:
    """Accessibility permission check via System Events."""

    def __init__(self, runner: Runner = subprocess.run) -> None:
        self._runner = runner

    def check(self) -> bool:
        try:
            run_osascript(
                'tell application "System Events" to get name of first process',
                runner=self._runner,
            )
        except WindowSourceError as exc:
            logger.debug("Accessibility check failed: %s", exc)
            return False
        return True

    def request(self) -> None:
        try:
            self._runner(["open", ACCESSIBILITY_PANE], check=False)
        except OSError as exc:
            logger.warning("Could not open accessibility settings: %s", exc)


class SystemEventsSource:
    """macOS window source that reads windows through System Events."""

    def __init__(self, runner: Runner = subprocess.run) -> None:
        self._runner = runner

    def is_running(self, app_name: str, bundle_id: str) -> bool:
        script = (
            'tell application "System Events" to return exists '
            f"(first process whose name is {quote_applescript(app_name)}"
            f" or bundle identifier is {quote_applescript(bundle_id)})"
        )
        return run_osascript(script, runner=self._runner) == "true"

    def list_windows(self, owner: str) -> list[WindowInfo]:
        script = f"""
tell application "System Events"
    set out to ""
    repeat with w in windows of process {quote_applescript(owner)}
        set {{ww, hh}} to size of w
        set out to out & (name of w as text) & tab & ww & tab & hh & linefeed
    end repeat
    return out
end tell
"""
        output = run_osascript(script, runner=self._runner)
        windows = []
        for index, line in enumerate(output.splitlines(), start=1):
            parts = line.split("\t")
            if len(parts) != 3:
                continue
            try:
                width, height = float(parts[1]), float(parts[2])
            except ValueError:
                continue
            windows.append(
                WindowInfo(
                    title=parts[0],
                    width=width,
                    height=height,
                    handle=(owner, index),
                )
            )
        return windows

    def read_all_text(self, window: WindowInfo) -> list[str]:
        owner, index = window.handle
        script = f"""
tell application "System Events"
    set out to {{}}
    set w to window {index} of process {quote_applescript(owner)}
    repeat with el in ({{w}} & (entire contents of w))
        repeat with attr in {{"AXValue", "AXTitle", "AXDescription", "AXHelp"}}
            try
                set v to value of attribute attr of el
                if v is not missing value then set end of out to (v as text)
            end try
        end repeat
    end repeat
    set AppleScript's text item delimiters to linefeed
    return out as text
end tell
"""
        output = run_osascript(script, runner=self._runner)
        texts: list[str] = []
        seen: set[str] = set()
        for line in output.splitlines():
            if line and line not in seen:
                seen.add(line)
                texts.append(line)
        return texts
