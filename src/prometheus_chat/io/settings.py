"""Settings file I/O for prometheus.

Manages a JSON settings file at XDG_CONFIG_HOME/prometheus/settings.json.
AppConfig is the typed view the CLI and TUI consume; unknown keys on disk
are preserved on save.

Import as: import prometheus_chat.io.settings
"""

from __future__ import annotations

import json
import os
import tempfile
from dataclasses import asdict, dataclass, field, fields
from pathlib import Path
from urllib.parse import urlparse

from prometheus_chat.core.palette import DEFAULT_THEME

DEFAULT_OLLAMA_URL = "http://localhost:11434"
MAX_SAVED_URLS = 10
_LOCAL_HOSTS = {"localhost", "127.0.0.1", "::1"}


def get_config_path() -> Path:
    """Return path to settings file.

    Uses XDG_CONFIG_HOME (default ~/.config) / prometheus / settings.json.
    """
    config_home = os.environ.get("XDG_CONFIG_HOME", os.path.expanduser("~/.config"))
    return Path(config_home) / "prometheus" / "settings.json"


def load_settings() -> dict:
    """Load settings from JSON file. Returns empty dict on missing/corrupt file."""
    path = get_config_path()
    # [LAW:dataflow-not-control-flow] Always attempt read; empty dict is the "no data" value.
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except (FileNotFoundError, json.JSONDecodeError, OSError):
        return {}
    return data if isinstance(data, dict) else {}


def atomic_write_json(path: Path, data) -> None:
    """Write JSON to a temp file in the target directory, then rename over path."""
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_path = tempfile.mkstemp(dir=path.parent, suffix=".tmp")
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            json.dump(data, f, indent=2)
            f.write("\n")
        os.replace(tmp_path, path)
    except Exception:
        try:
            os.unlink(tmp_path)
        except OSError:
            pass
        raise


def save_settings(data: dict) -> None:
    """Atomic write of settings dict to JSON file."""
    atomic_write_json(get_config_path(), data)


# ─── Typed config ───────────────────────────────────────────────────────────


@dataclass
class AppConfig:
    ollama_url: str = DEFAULT_OLLAMA_URL
    model: str | None = None
    timeout_seconds: int = 30
    theme: str = DEFAULT_THEME
    max_chat_history: int = 1000
    saved_urls: list[str] = field(default_factory=list)


def load_config() -> AppConfig:
    """AppConfig from disk; missing or mistyped keys keep their defaults."""
    data = load_settings()
    config = AppConfig()
    for f in fields(AppConfig):
        if f.name not in data:
            continue
        value = data[f.name]
        default = getattr(config, f.name)
        if default is None or value is None or isinstance(value, type(default)):
            setattr(config, f.name, value)
    return config


def save_config(config: AppConfig) -> None:
    data = load_settings()
    data.update(asdict(config))
    save_settings(data)


def is_localhost_url(url: str) -> bool:
    try:
        host = urlparse(url).hostname
    except ValueError:
        return False
    return host in _LOCAL_HOSTS


def add_saved_url(config: AppConfig, url: str) -> None:
    """Remember a remote backend URL, most recent first. Localhost is never saved."""
    if is_localhost_url(url) or url in config.saved_urls:
        return
    config.saved_urls.insert(0, url)
    del config.saved_urls[MAX_SAVED_URLS:]


def remove_saved_url(config: AppConfig, url: str) -> None:
    config.saved_urls = [u for u in config.saved_urls if u != url]


def validate_backend_url(url: str) -> str | None:
    """Return an error message for an unusable backend URL, or None if it is fine.

    Remote backends must use https; localhost may use http or https.
    """
    if not url or not url.strip():
        return "Backend URL is empty"
    try:
        parsed = urlparse(url.strip())
        host = parsed.hostname
    except ValueError:
        return f"Invalid URL: {url}"
    if parsed.scheme not in {"http", "https"} or not host:
        return f"Invalid URL: {url}"
    if host in _LOCAL_HOSTS or parsed.scheme == "https":
        return None
    suggested = parsed._replace(scheme="https").geturl()
    return f"Remote backend must use HTTPS: {url} (try {suggested})"
