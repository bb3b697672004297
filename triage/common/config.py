"""
Configuration Management for Issue Triage

Loads configuration from ~/.triage/config.json and environment variables.
"""

import os
import json
import logging
from pathlib import Path
from dataclasses import dataclass, field
from typing import Dict, List

logger = logging.getLogger("triage.common.config")

# Default config paths
CONFIG_DIR = Path.home() / ".triage"
CONFIG_PATH = CONFIG_DIR / "config.json"
STATE_DIR = CONFIG_DIR / "state"
LOGS_DIR = CONFIG_DIR / "logs"


class ProjectConfigError(Exception):
    """No projects configured, or the configuration cannot be used"""


class UnknownProjectError(ProjectConfigError):
    """Requested project name is not configured"""

    def __init__(self, name: str, available: List[str]):
        self.name = name
        self.available = available
        super().__init__(
            f"Project '{name}' not found in configuration. "
            f"Available projects: {', '.join(available)}"
        )


@dataclass
class Project:
    """A configured issue collection"""
    name: str
    id: str


@dataclass
class LLMConfig:
    """Semantic-analysis backend configuration"""
    provider: str = "openai"
    anthropic_api_key: str = ""
    anthropic_model: str = "claude-sonnet-4-20250514"
    openai_api_key: str = ""
    openai_model: str = "gpt-4o-mini"
    google_api_key: str = ""
    google_model: str = "gemini-2.0-flash"


@dataclass
class StateConfig:
    """Where per-project state is persisted"""
    state_dir: str = str(STATE_DIR)


@dataclass
class RulesConfig:
    """Deterministic rule thresholds"""
    stale_days: int = 5
    unanswered_days: int = 14


@dataclass
class SemanticConfig:
    """Semantic check dispatch configuration"""
    enabled: bool = True
    body_limit: int = 2000
    comment_limit: int = 500
    max_comments: int = 5
    max_tokens: int = 800
    timeout: float = 60.0
    max_retries: int = 3
    retry_delay: float = 5.0


@dataclass
class ServerConfig:
    """HTTP review surface configuration"""
    port: int = 8080


@dataclass
class TriageConfig:
    """Main triage configuration"""
    projects: Dict[str, str] = field(default_factory=dict)  # name -> project id
    llm: LLMConfig = field(default_factory=LLMConfig)
    state: StateConfig = field(default_factory=StateConfig)
    rules: RulesConfig = field(default_factory=RulesConfig)
    semantic: SemanticConfig = field(default_factory=SemanticConfig)
    server: ServerConfig = field(default_factory=ServerConfig)
    _env_sourced_keys: set = field(default_factory=set, repr=False)

    @property
    def state_path(self) -> Path:
        return Path(self.state.state_dir).expanduser()


def _parse_projects(value) -> Dict[str, str]:
    """Parse a name -> id mapping; ids are kept as strings"""
    if isinstance(value, str):
        try:
            value = json.loads(value)
        except json.JSONDecodeError:
            logger.warning("Projects value is not valid JSON, ignoring")
            return {}
    if not isinstance(value, dict):
        return {}
    return {str(name): str(project_id) for name, project_id in value.items()}


def _parse_llm_config(data: dict) -> LLMConfig:
    """Parse llm section from config dict"""
    llm_data = data.get("llm", {})
    return LLMConfig(
        provider=llm_data.get("provider", "openai"),
        anthropic_api_key=llm_data.get("anthropic_api_key", ""),
        anthropic_model=llm_data.get("anthropic_model", "claude-sonnet-4-20250514"),
        openai_api_key=llm_data.get("openai_api_key", ""),
        openai_model=llm_data.get("openai_model", "gpt-4o-mini"),
        google_api_key=llm_data.get("google_api_key", ""),
        google_model=llm_data.get("google_model", "gemini-2.0-flash"),
    )


def _parse_rules_config(data: dict) -> RulesConfig:
    """Parse rules section from config dict"""
    rules_data = data.get("rules", {})
    return RulesConfig(
        stale_days=rules_data.get("stale_days", 5),
        unanswered_days=rules_data.get("unanswered_days", 14),
    )


def _parse_semantic_config(data: dict) -> SemanticConfig:
    """Parse semantic section from config dict"""
    semantic_data = data.get("semantic", {})
    return SemanticConfig(
        enabled=semantic_data.get("enabled", True),
        body_limit=semantic_data.get("body_limit", 2000),
        comment_limit=semantic_data.get("comment_limit", 500),
        max_comments=semantic_data.get("max_comments", 5),
        max_tokens=semantic_data.get("max_tokens", 800),
        timeout=semantic_data.get("timeout", 60.0),
        max_retries=semantic_data.get("max_retries", 3),
        retry_delay=semantic_data.get("retry_delay", 5.0),
    )


def load_config() -> TriageConfig:
    """
    Load configuration from file and environment variables.

    Priority (highest to lowest):
    1. Environment variables
    2. Config file (~/.triage/config.json)
    3. Default values
    """
    config = TriageConfig()

    if CONFIG_PATH.exists():
        try:
            with open(CONFIG_PATH) as f:
                data = json.load(f)

            config.projects = _parse_projects(data.get("projects", {}))
            config.llm = _parse_llm_config(data)
            config.state = StateConfig(
                state_dir=data.get("state", {}).get("state_dir", str(STATE_DIR)),
            )
            config.rules = _parse_rules_config(data)
            config.semantic = _parse_semantic_config(data)
            config.server = ServerConfig(port=data.get("server", {}).get("port", 8080))
        except (json.JSONDecodeError, IOError) as e:
            logger.warning("Failed to load config file: %s", e)

    if os.getenv("TRIAGE_PROJECTS"):
        config.projects = _parse_projects(os.getenv("TRIAGE_PROJECTS"))
    if os.getenv("TRIAGE_STATE_DIR"):
        config.state.state_dir = os.getenv("TRIAGE_STATE_DIR")
    if os.getenv("TRIAGE_STALE_DAYS"):
        config.rules.stale_days = int(os.getenv("TRIAGE_STALE_DAYS"))
    if os.getenv("TRIAGE_UNANSWERED_DAYS"):
        config.rules.unanswered_days = int(os.getenv("TRIAGE_UNANSWERED_DAYS"))
    if os.getenv("TRIAGE_PORT"):
        config.server.port = int(os.getenv("TRIAGE_PORT"))

    # LLM env var overrides (track env-sourced keys so they are never saved)
    _env_llm_map = {
        "ANTHROPIC_API_KEY": "anthropic_api_key",
        "ANTHROPIC_MODEL": "anthropic_model",
        "OPENAI_API_KEY": "openai_api_key",
        "OPENAI_MODEL": "openai_model",
        "GOOGLE_API_KEY": "google_api_key",
        "GEMINI_API_KEY": "google_api_key",
        "GOOGLE_MODEL": "google_model",
        "TRIAGE_LLM_PROVIDER": "provider",
    }
    for env_var, attr in _env_llm_map.items():
        val = os.getenv(env_var)
        if val:
            setattr(config.llm, attr, val)
            config._env_sourced_keys.add(attr)

    return config


def save_config(config: TriageConfig) -> None:
    """Save configuration to file.

    API keys that came from environment variables are written as empty
    strings so that secrets are not persisted to disk.
    """
    CONFIG_DIR.mkdir(parents=True, exist_ok=True)

    env_sourced = getattr(config, "_env_sourced_keys", set())

    llm_section = {
        "provider": config.llm.provider,
        "anthropic_api_key": config.llm.anthropic_api_key,
        "anthropic_model": config.llm.anthropic_model,
        "openai_api_key": config.llm.openai_api_key,
        "openai_model": config.llm.openai_model,
        "google_api_key": config.llm.google_api_key,
        "google_model": config.llm.google_model,
    }
    for key in ("anthropic_api_key", "openai_api_key", "google_api_key"):
        if key in env_sourced:
            llm_section[key] = ""

    data = {
        "projects": dict(config.projects),
        "llm": llm_section,
        "state": {"state_dir": config.state.state_dir},
        "rules": {
            "stale_days": config.rules.stale_days,
            "unanswered_days": config.rules.unanswered_days,
        },
        "semantic": {
            "enabled": config.semantic.enabled,
            "body_limit": config.semantic.body_limit,
            "comment_limit": config.semantic.comment_limit,
            "max_comments": config.semantic.max_comments,
            "max_tokens": config.semantic.max_tokens,
            "timeout": config.semantic.timeout,
            "max_retries": config.semantic.max_retries,
            "retry_delay": config.semantic.retry_delay,
        },
        "server": {"port": config.server.port},
    }

    with open(CONFIG_PATH, "w") as f:
        json.dump(data, f, indent=2)

    # Set secure permissions
    CONFIG_PATH.chmod(0o600)


def resolve_project(config: TriageConfig, name: str) -> Project:
    """Look up a configured project by name.

    Raises:
        ProjectConfigError: no projects are configured at all
        UnknownProjectError: ``name`` is not one of the configured projects
    """
    if not config.projects:
        raise ProjectConfigError(
            "No projects configured. Set TRIAGE_PROJECTS, e.g. "
            "TRIAGE_PROJECTS='{\"AI\": \"3346420\", \"Core\": \"3060\"}'"
        )
    if name not in config.projects:
        raise UnknownProjectError(name, sorted(config.projects))
    return Project(name=name, id=config.projects[name])


def ensure_directories(config: TriageConfig) -> None:
    """Ensure required directories exist"""
    CONFIG_DIR.mkdir(parents=True, exist_ok=True)
    LOGS_DIR.mkdir(parents=True, exist_ok=True)
    config.state_path.mkdir(parents=True, exist_ok=True)
