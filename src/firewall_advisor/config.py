"""Settings loaded from a YAML configuration file."""

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

logger = logging.getLogger(__name__)

DEFAULT_CONFIG = "config/advisor.yaml"
DEFAULT_DATA_DIR = Path.home() / ".config" / "firewall-advisor"

HISTORY_MIN = 10
HISTORY_MAX = 1000


@dataclass
class TargetSettings:
    """Identity of the firewall application whose alerts are watched.

    Attributes:
        app_name: Process / application name of the firewall.
        bundle_id: Bundle identifier, matched as an alternative to the name.
        title_marker: Substring that identifies an alert window title.
    """

    app_name: str = "LuLu"
    bundle_id: str = "com.objective-see.lulu.app"
    title_marker: str = "LuLu Alert"


@dataclass
class MonitorSettings:
    poll_interval: float = 0.5


@dataclass
class DismissalSettings:
    """Thresholds used to decide that the operator resolved an alert.

    Attributes:
        grace_period: Seconds to wait after an alert before polling.
        poll_interval: Seconds between window-size polls.
        shrink_delta: Shrink in either dimension that counts as dismissal.
        min_width: Windows narrower than this are ignored.
        min_height: Windows shorter than this are ignored.
    """

    grace_period: float = 3.0
    poll_interval: float = 1.5
    shrink_delta: float = 100.0
    min_width: float = 200.0
    min_height: float = 100.0


@dataclass
class AnalysisSettings:
    """HTTP and credential-ordering settings for the analysis client.

    Attributes:
        timeout: Per-request timeout in seconds.
        max_tokens: Maximum completion tokens requested from every provider.
        env_vars: Environment variables consulted (in order) before the store.
        backup_slots: Number of backup slots after the primary slot.
    """

    timeout: float = 30.0
    max_tokens: int = 1024
    env_vars: list[str] = field(default_factory=lambda: ["ANTHROPIC_API_KEY"])
    backup_slots: int = 5


@dataclass
class ProviderSettings:
    """Per-provider overrides.

    Attributes:
        models: Wire model identifier per provider name.
        endpoints: Endpoint URL template per provider name.
        relay_prefix: Credential prefix that identifies the relay provider.
        oauth_system_prompt: Leading system block required for OAuth tokens.
        oauth_user_agent: User-Agent sent with OAuth tokens.
        oauth_app: Value of the ``x-app`` header sent with OAuth tokens.
    """

    models: dict[str, str] = field(default_factory=dict)
    endpoints: dict[str, str] = field(default_factory=dict)
    relay_prefix: str = "sk-relay-"
    oauth_system_prompt: str = "You are a firewall security advisor."
    oauth_user_agent: str = "firewall-advisor/0.1"
    oauth_app: str = "cli"


@dataclass
class HistorySettings:
    max_count: int = 100
    path: str | None = None


@dataclass
class StorageSettings:
    keys_path: str = str(DEFAULT_DATA_DIR / "keys.json")


@dataclass
class RemoteSettings:
    """External notifier used for remote allow/block decisions.

    Attributes:
        command: Argument vector; ``{message}`` is replaced by the alert text.
            Empty disables remote notifications.
        stale_after: Seconds after which an unanswered alert is dropped.
    """

    command: list[str] = field(default_factory=list)
    stale_after: float = 300.0


@dataclass
class ServerSettings:
    host: str = "127.0.0.1"
    port: int = 8765


@dataclass
class LoggingSettings:
    level: str = "INFO"


@dataclass
class Settings:
    """Complete runtime configuration."""

    target: TargetSettings = field(default_factory=TargetSettings)
    monitor: MonitorSettings = field(default_factory=MonitorSettings)
    dismissal: DismissalSettings = field(default_factory=DismissalSettings)
    analysis: AnalysisSettings = field(default_factory=AnalysisSettings)
    providers: ProviderSettings = field(default_factory=ProviderSettings)
    history: HistorySettings = field(default_factory=HistorySettings)
    storage: StorageSettings = field(default_factory=StorageSettings)
    remote: RemoteSettings = field(default_factory=RemoteSettings)
    server: ServerSettings = field(default_factory=ServerSettings)
    logging: LoggingSettings = field(default_factory=LoggingSettings)


def _section(data: dict[str, Any], name: str) -> dict[str, Any]:
    section = data.get(name, {})
    if section is None:
        return {}
    if not isinstance(section, dict):
        raise ValueError(f"'{name}' section must be a mapping")
    return section


def _positive(section: dict[str, Any], name: str, key: str, default: float) -> float:
    value = section.get(key, default)
    if not isinstance(value, (int, float)) or isinstance(value, bool) or value <= 0:
        raise ValueError(f"{name}.{key} must be a positive number, got {value!r}")
    return float(value)


def _string_list(section: dict[str, Any], name: str, key: str, default: list[str]) -> list[str]:
    value = section.get(key, default)
    if not isinstance(value, list) or not all(isinstance(v, str) for v in value):
        raise ValueError(f"{name}.{key} must be a list of strings")
    return list(value)


def _string_map(section: dict[str, Any], name: str, key: str) -> dict[str, str]:
    value = section.get(key, {}) or {}
    if not isinstance(value, dict):
        raise ValueError(f"{name}.{key} must be a mapping")
    return {str(k): str(v) for k, v in value.items()}


def parse_settings(data: dict[str, Any] | None) -> Settings:
    """Build Settings from an already-parsed YAML document.

    Args:
        data: The YAML document, or None for an empty file.

    Returns:
        Settings with defaults for every missing key.

    Raises:
        ValueError: If a section is not a mapping or a value is out of range.
    """
    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise ValueError("Configuration must be a YAML mapping")

    target = _section(data, "target")
    monitor = _section(data, "monitor")
    dismissal = _section(data, "dismissal")
    analysis = _section(data, "analysis")
    providers = _section(data, "providers")
    history = _section(data, "history")
    storage = _section(data, "storage")
    remote = _section(data, "remote")
    server = _section(data, "server")
    logging_section = _section(data, "logging")

    defaults = Settings()

    max_count = history.get("max_count", defaults.history.max_count)
    if not isinstance(max_count, int) or isinstance(max_count, bool):
        raise ValueError(f"history.max_count must be an integer, got {max_count!r}")

    backup_slots = analysis.get("backup_slots", defaults.analysis.backup_slots)
    if not isinstance(backup_slots, int) or backup_slots < 0:
        raise ValueError(f"analysis.backup_slots must be >= 0, got {backup_slots!r}")

    max_tokens = analysis.get("max_tokens", defaults.analysis.max_tokens)
    if not isinstance(max_tokens, int) or max_tokens <= 0:
        raise ValueError(f"analysis.max_tokens must be a positive integer, got {max_tokens!r}")

    port = server.get("port", defaults.server.port)
    if not isinstance(port, int) or not 0 < port < 65536:
        raise ValueError(f"server.port must be a valid TCP port, got {port!r}")

    return Settings(
        target=TargetSettings(
            app_name=str(target.get("app_name", defaults.target.app_name)),
            bundle_id=str(target.get("bundle_id", defaults.target.bundle_id)),
            title_marker=str(target.get("title_marker", defaults.target.title_marker)),
        ),
        monitor=MonitorSettings(
            poll_interval=_positive(monitor, "monitor", "poll_interval", defaults.monitor.poll_interval),
        ),
        dismissal=DismissalSettings(
            grace_period=_positive(dismissal, "dismissal", "grace_period", defaults.dismissal.grace_period),
            poll_interval=_positive(dismissal, "dismissal", "poll_interval", defaults.dismissal.poll_interval),
            shrink_delta=_positive(dismissal, "dismissal", "shrink_delta", defaults.dismissal.shrink_delta),
            min_width=_positive(dismissal, "dismissal", "min_width", defaults.dismissal.min_width),
            min_height=_positive(dismissal, "dismissal", "min_height", defaults.dismissal.min_height),
        ),
        analysis=AnalysisSettings(
            timeout=_positive(analysis, "analysis", "timeout", defaults.analysis.timeout),
            max_tokens=max_tokens,
            env_vars=_string_list(analysis, "analysis", "env_vars", defaults.analysis.env_vars),
            backup_slots=backup_slots,
        ),
        providers=ProviderSettings(
            models=_string_map(providers, "providers", "models"),
            endpoints=_string_map(providers, "providers", "endpoints"),
            relay_prefix=str(providers.get("relay_prefix", defaults.providers.relay_prefix)),
            oauth_system_prompt=str(
                providers.get("oauth_system_prompt", defaults.providers.oauth_system_prompt)
            ),
            oauth_user_agent=str(providers.get("oauth_user_agent", defaults.providers.oauth_user_agent)),
            oauth_app=str(providers.get("oauth_app", defaults.providers.oauth_app)),
        ),
        history=HistorySettings(
            max_count=min(HISTORY_MAX, max(HISTORY_MIN, max_count)),
            path=history.get("path", defaults.history.path),
        ),
        storage=StorageSettings(
            keys_path=str(Path(storage.get("keys_path", defaults.storage.keys_path)).expanduser()),
        ),
        remote=RemoteSettings(
            command=_string_list(remote, "remote", "command", defaults.remote.command),
            stale_after=_positive(remote, "remote", "stale_after", defaults.remote.stale_after),
        ),
        server=ServerSettings(
            host=str(server.get("host", defaults.server.host)),
            port=port,
        ),
        logging=LoggingSettings(
            level=str(logging_section.get("level", defaults.logging.level)),
        ),
    )


def load_settings(path: str | Path | None = None) -> Settings:
    """Load settings from a YAML file.

    A missing file is not an error: the built-in defaults are returned.

    Args:
        path: Filesystem path to the YAML file. Defaults to DEFAULT_CONFIG.

    Returns:
        The parsed Settings.

    Raises:
        ValueError: If the file content is invalid.
    """
    file_path = Path(path or DEFAULT_CONFIG)
    if not file_path.exists():
        logger.debug("Config %s not found, using defaults", file_path)
        return Settings()

    with open(file_path) as f:
        try:
            data = yaml.safe_load(f)
        except yaml.YAMLError as exc:
            raise ValueError(f"malformed YAML: {exc}") from exc

    settings = parse_settings(data)
    logger.debug("Loaded config %s", file_path)
    return settings
