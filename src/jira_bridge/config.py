"""
jira-bridge Configuration

Loads config.yaml and .env and assembles an explicit, immutable
BridgeConfig. Nothing downstream reads the environment directly: the
config object is passed to the tracker client, the identity store and the
dispatcher, so several workspaces can run side by side with their own
Jira site and credentials.

Usage:
    from jira_bridge.config import ConfigLoader, load_bridge_config

    config = load_bridge_config()
    config.jira.browse_url("PROJ-123")

config.yaml layout:
    jira:
      url: https://your-domain.atlassian.net
      username: bot@example.com
    store:
      database: database.sqlite
    interaction:
      serialize_mutations: true
      search_max_results: 100
"""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional

import yaml
from dotenv import load_dotenv

from jira_bridge.exceptions import ConfigError
from jira_bridge.logging_config import get_logger

logger = get_logger("config")

HOME_ENV_VAR = "JIRA_BRIDGE_HOME"
HOME_MARKER = ".jira-bridge"
DEFAULT_DATABASE = "database.sqlite"


def normalize_jira_url(raw: str) -> str:
    """Turn 'your-domain.atlassian.net/' or 'http://x' into 'https://host'."""
    host = raw.strip()
    for prefix in ("https://", "http://"):
        if host.startswith(prefix):
            host = host[len(prefix):]
    return f"https://{host.rstrip('/')}"


@dataclass(frozen=True)
class JiraConfig:
    """Jira Cloud site and basic-auth credentials."""

    url: str
    username: str
    api_token: str = field(repr=False)
    timeout: int = 30

    def browse_url(self, issue_key: str) -> str:
        """Web link for an issue."""
        return f"{self.url}/browse/{issue_key}"


@dataclass(frozen=True)
class SlackConfig:
    """Slack bot token and the app-level token Socket Mode needs."""

    bot_token: str = field(repr=False)
    app_token: str = field(default="", repr=False)


@dataclass(frozen=True)
class StoreConfig:
    database_path: Path


@dataclass(frozen=True)
class InteractionConfig:
    """Dispatcher behavior switches."""

    serialize_mutations: bool = True
    search_max_results: int = 100


@dataclass(frozen=True)
class BridgeConfig:
    """Everything one running bridge needs."""

    jira: JiraConfig
    slack: SlackConfig
    store: StoreConfig
    interaction: InteractionConfig = field(default_factory=InteractionConfig)


class ConfigLoader:
    """
    Reads config.yaml and .env from a home directory.

    Home resolution order:
    1. Explicit path argument
    2. JIRA_BRIDGE_HOME environment variable
    3. Walk up from cwd looking for a .jira-bridge marker
    4. The current directory
    """

    def __init__(self, home: Optional[Path] = None, auto_load: bool = True):
        self.home = home
        self.config: Dict[str, Any] = {}

        if auto_load:
            self.home = self.home or self._find_home()
            self._load()

    def _find_home(self) -> Path:
        if os.getenv(HOME_ENV_VAR):
            return Path(os.environ[HOME_ENV_VAR])

        current = Path.cwd()
        while current != current.parent:
            if (current / HOME_MARKER).exists():
                return current
            current = current.parent

        return Path.cwd()

    def _load(self) -> None:
        """Load .env (secrets) then config.yaml."""
        env_path = self.home / ".env"
        config_path = self.home / "config.yaml"

        if env_path.exists():
            load_dotenv(env_path)
            logger.debug("Loaded .env from %s", env_path)

        if not config_path.exists():
            logger.debug("No config.yaml at %s, using environment only", config_path)
            self.config = {}
            return

        try:
            with open(config_path, "r", encoding="utf-8") as f:
                self.config = yaml.safe_load(f) or {}
            logger.debug("Loaded config.yaml from %s", config_path)
        except yaml.YAMLError as e:
            raise ConfigError(f"Invalid YAML in {config_path}", details=str(e))
        except IOError as e:
            raise ConfigError(f"Cannot read {config_path}", details=str(e))

    def get(self, key: str, default: Any = None) -> Any:
        """
        Get a value using dot notation (e.g. "jira.url").

        Args:
            key: Dot-separated key path
            default: Value to return if key not found

        Returns:
            Configuration value or default.
        """
        value: Any = self.config
        for k in key.split("."):
            if isinstance(value, dict) and k in value:
                value = value[k]
            else:
                return default
        return default if value is None else value

    def get_bool(self, key: str, default: bool = False) -> bool:
        value = self.get(key)
        if value is None:
            return default
        if isinstance(value, bool):
            return value
        return str(value).lower() in ("1", "true", "yes", "on")

    def get_secret(self, key: str) -> Optional[str]:
        """Secrets only ever come from the environment."""
        return os.getenv(key)

    def require(self, key: str, env_var: Optional[str] = None) -> str:
        """Get a value from config.yaml, falling back to an env var."""
        value = self.get(key) or (os.getenv(env_var) if env_var else None)
        if not value:
            raise ConfigError(f"Required config missing: {key}", config_key=env_var or key)
        return str(value)

    def require_secret(self, key: str) -> str:
        value = self.get_secret(key)
        if not value:
            raise ConfigError(f"Required secret missing: {key}", config_key=key)
        return value

    def database_path(self) -> Path:
        """Identity store location, relative paths resolved against home."""
        database = Path(self.get("store.database") or os.getenv("JIRA_BRIDGE_DB") or DEFAULT_DATABASE)
        if str(database) != ":memory:" and not database.is_absolute():
            database = self.home / database
        return database

    def build(self) -> BridgeConfig:
        """Assemble the immutable BridgeConfig."""
        jira_url = self.get("jira.url") or os.getenv("JIRA_URL") or os.getenv("JIRA_DOMAIN")
        if not jira_url:
            raise ConfigError("Required config missing: jira.url", config_key="JIRA_URL")

        jira = JiraConfig(
            url=normalize_jira_url(jira_url),
            username=self.require("jira.username", "JIRA_USERNAME"),
            api_token=self.require_secret("JIRA_API_TOKEN"),
            timeout=int(self.get("jira.timeout", 30)),
        )
        slack = SlackConfig(
            bot_token=self.require_secret("SLACK_BOT_TOKEN"),
            app_token=self.get_secret("SLACK_APP_TOKEN") or "",
        )

        database = self.database_path()

        interaction = InteractionConfig(
            serialize_mutations=self.get_bool("interaction.serialize_mutations", True),
            search_max_results=int(self.get("interaction.search_max_results", 100)),
        )

        return BridgeConfig(
            jira=jira,
            slack=slack,
            store=StoreConfig(database_path=database),
            interaction=interaction,
        )


def load_bridge_config(home: Optional[Path] = None) -> BridgeConfig:
    """Load configuration from the resolved home directory."""
    return ConfigLoader(home=home).build()
