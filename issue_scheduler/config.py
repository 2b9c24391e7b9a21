"""
YAML configuration for issue_scheduler.

Example::

    username: jcouball
    password: my_password
    site: https://jira.example.com
    context_path: ''
    auth_type: basic
    issue_templates: '~/scheduled_issues/**/*.yaml'
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Tuple, Union
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

import yaml

from issue_scheduler.errors import ConfigError

DEFAULT_CONFIG = "~/.issue_scheduler/config.yaml"
DEFAULT_ISSUE_TEMPLATES = "~/.issue_scheduler/issue_templates/**/*.yaml"
DEFAULT_POLL_SECONDS = 30
DEFAULT_TIMEOUT_SECONDS = 30
VALID_AUTH_TYPES = {"basic", "bearer"}

# None marks a key that has no default and must be given.
DEFAULT_VALUES: Dict[str, Any] = {
    "username": None,
    "password": None,
    "site": None,
    "context_path": "",
    "auth_type": "basic",
    "issue_templates": DEFAULT_ISSUE_TEMPLATES,
    "timezone": None,
    "poll_seconds": DEFAULT_POLL_SECONDS,
    "timeout_seconds": DEFAULT_TIMEOUT_SECONDS,
}
OPTIONAL_NULLABLE = {"timezone"}


def system_timezone() -> Tuple[ZoneInfo, str]:
    local_tz = datetime.now().astimezone().tzinfo
    if isinstance(local_tz, ZoneInfo):
        return local_tz, local_tz.key
    tz_name = os.environ.get("TZ")
    if tz_name:
        try:
            return ZoneInfo(tz_name), tz_name
        except (ZoneInfoNotFoundError, ValueError):
            pass
    return ZoneInfo("UTC"), "UTC"


@dataclass(frozen=True)
class Config:
    username: str
    password: str
    site: str
    context_path: str
    auth_type: str
    issue_templates: List[str]
    timezone_name: str
    poll_seconds: int
    timeout_seconds: int
    base_dir: Path

    @property
    def timezone(self) -> ZoneInfo:
        return ZoneInfo(self.timezone_name)

    def to_jira_options(self) -> Dict[str, Any]:
        return {
            "username": self.username,
            "password": self.password,
            "site": self.site,
            "context_path": self.context_path,
            "auth_type": self.auth_type,
            "timeout_seconds": self.timeout_seconds,
        }


def parse_yaml(text: str) -> Dict[str, Any]:
    try:
        payload = yaml.safe_load(text)
    except yaml.YAMLError as exc:
        raise ConfigError(f"YAML is not valid: {exc}") from exc
    if not isinstance(payload, dict):
        raise ConfigError(f"YAML config is not an object, contained {payload!r}")
    return payload


def _ensure_str(value: Any, key: str, allow_empty: bool = False) -> str:
    if not isinstance(value, str) or (not allow_empty and not value.strip()):
        raise ConfigError(f"Error: {key} must be a non-empty string.")
    return value.strip()


def _ensure_int(value: Any, key: str, minimum: int = 1) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise ConfigError(f"Error: {key} must be an integer.")
    if value < minimum:
        raise ConfigError(f"Error: {key} must be >= {minimum}.")
    return value


def _ensure_patterns(value: Union[str, List[Any]]) -> List[str]:
    if isinstance(value, str):
        return [_ensure_str(value, "issue_templates")]
    if isinstance(value, list) and value:
        return [_ensure_str(item, f"issue_templates[{idx}]") for idx, item in enumerate(value)]
    raise ConfigError("Error: issue_templates must be a glob string or a non-empty list of globs.")


def config_from_dict(raw: Dict[str, Any], base_dir: Path = Path(".")) -> Config:
    unexpected = sorted(set(raw.keys()) - set(DEFAULT_VALUES.keys()))
    if unexpected:
        raise ConfigError(f"Unexpected configuration keys: {unexpected}")

    merged = {**DEFAULT_VALUES, **raw}
    missing = [key for key, value in merged.items() if value is None and key not in OPTIONAL_NULLABLE]
    if missing:
        raise ConfigError(f"Missing configuration values: {missing}")

    site = _ensure_str(merged["site"], "site")
    if not (site.startswith("http://") or site.startswith("https://")):
        raise ConfigError("Error: site must be an HTTP URL.")

    auth_type = _ensure_str(merged["auth_type"], "auth_type").lower()
    if auth_type not in VALID_AUTH_TYPES:
        raise ConfigError(f'Error: auth_type must be one of {sorted(VALID_AUTH_TYPES)}, got "{auth_type}".')

    timezone_name = merged["timezone"]
    if timezone_name is None:
        _, timezone_name = system_timezone()
    else:
        timezone_name = _ensure_str(timezone_name, "timezone")
        try:
            ZoneInfo(timezone_name)
        except (ZoneInfoNotFoundError, ValueError) as exc:
            raise ConfigError(f'Error: Invalid timezone "{timezone_name}".') from exc

    return Config(
        username=_ensure_str(merged["username"], "username"),
        password=_ensure_str(merged["password"], "password"),
        site=site,
        context_path=_ensure_str(merged["context_path"], "context_path", allow_empty=True),
        auth_type=auth_type,
        issue_templates=_ensure_patterns(merged["issue_templates"]),
        timezone_name=timezone_name,
        poll_seconds=_ensure_int(merged["poll_seconds"], "poll_seconds"),
        timeout_seconds=_ensure_int(merged["timeout_seconds"], "timeout_seconds"),
        base_dir=base_dir,
    )


def load_config(config_path: Path) -> Config:
    if not config_path.exists():
        raise ConfigError(f"Error: Config file not found: {config_path}")
    raw = parse_yaml(config_path.read_text(encoding="utf-8"))
    return config_from_dict(raw, base_dir=config_path.parent)
