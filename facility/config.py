"""
Configuration for the facility status service.

Settings are read once from the environment at startup and are immutable
afterwards. Agent identities (who is primary, which directory each agent's
sessions live in, how long each may stay silent) come either from the
built-in roster or from a JSON file named by FACILITY_IDENTITIES_PATH.
"""

import json
import logging
import os
from dataclasses import dataclass, field, replace
from enum import Enum
from pathlib import Path
from typing import List, Mapping, Optional, Tuple

from .exceptions import ConfigError

logger = logging.getLogger(__name__)


# ============================================================================
# DEFAULTS
# ============================================================================

DEFAULT_AGENTS_ROOT = Path.home() / ".openclaw" / "agents"
DEFAULT_DATA_DIR = Path("data")

PROFILES_FILENAME = "agents.json"
REGISTRY_FILENAME = "agent-sessions.json"
SESSION_INDEX_FILENAME = "sessions.json"
SESSION_LOG_SUFFIX = ".jsonl"

PRIMARY_SESSION_KEY = "agent:main:main"

PRIMARY_TIMEOUT_SECONDS = 60.0
SUBORDINATE_TIMEOUT_SECONDS = 30.0

STATUS_TTL_SECONDS = 5.0
TAIL_READ_BYTES = 8192
WATCH_DEBOUNCE_MS = 100

DEFAULT_HOST = "0.0.0.0"
DEFAULT_PORT = 8080


class AgentClass(str, Enum):
    """Liveness class of an agent; decides its timeout and registration rule."""
    PRIMARY = "primary"
    SUBORDINATE = "subordinate"


@dataclass(frozen=True)
class AgentIdentity:
    """Static identity of one logical agent."""
    name: str
    alias: str
    agent_class: AgentClass
    timeout_seconds: float

    @property
    def is_primary(self) -> bool:
        return self.agent_class == AgentClass.PRIMARY


# (name, directory alias, class)
DEFAULT_ROSTER: Tuple[Tuple[str, str, AgentClass], ...] = (
    ("Flint", "main", AgentClass.PRIMARY),
    ("Cipher", "cipher", AgentClass.SUBORDINATE),
    ("Atlas", "atlas", AgentClass.SUBORDINATE),
    ("Vera", "vera", AgentClass.SUBORDINATE),
    ("Pulse", "pulse", AgentClass.SUBORDINATE),
    ("Scout", "scout", AgentClass.SUBORDINATE),
)


def build_identities(
    roster=DEFAULT_ROSTER,
    primary_timeout: float = PRIMARY_TIMEOUT_SECONDS,
    subordinate_timeout: float = SUBORDINATE_TIMEOUT_SECONDS,
) -> Tuple[AgentIdentity, ...]:
    """Build identities from (name, alias, class) triples using class timeouts."""
    identities = []
    for name, alias, agent_class in roster:
        timeout = primary_timeout if agent_class == AgentClass.PRIMARY else subordinate_timeout
        identities.append(AgentIdentity(name, alias, AgentClass(agent_class), timeout))
    return _validate_identities(identities)


def load_identities(
    path: Path,
    primary_timeout: float = PRIMARY_TIMEOUT_SECONDS,
    subordinate_timeout: float = SUBORDINATE_TIMEOUT_SECONDS,
) -> Tuple[AgentIdentity, ...]:
    """
    Load agent identities from a JSON file.

    The file holds a list of objects:
        [{"name": "Flint", "alias": "main", "class": "primary"},
         {"name": "Cipher", "class": "subordinate", "timeout": 45}]

    "alias" defaults to the lowercased name, "timeout" to the class default.

    Raises:
        ConfigError: If the file is unreadable or the roster is invalid
    """
    try:
        with open(path, "r", encoding="utf-8") as f:
            raw = json.load(f)
    except (OSError, ValueError) as e:
        raise ConfigError(f"Cannot read identities file {path}: {e}") from e

    if not isinstance(raw, list):
        raise ConfigError(f"Identities file {path} must contain a JSON list")

    identities = []
    for item in raw:
        if not isinstance(item, dict) or not item.get("name"):
            raise ConfigError(f"Invalid identity entry in {path}: {item!r}")
        try:
            agent_class = AgentClass(item.get("class", AgentClass.SUBORDINATE.value))
        except ValueError as e:
            raise ConfigError(f"Unknown agent class for {item['name']}: {item.get('class')}") from e

        default_timeout = primary_timeout if agent_class == AgentClass.PRIMARY else subordinate_timeout
        try:
            timeout = float(item.get("timeout", default_timeout))
        except (TypeError, ValueError) as e:
            raise ConfigError(f"Invalid timeout for {item['name']}: {item.get('timeout')}") from e

        identities.append(AgentIdentity(
            name=str(item["name"]),
            alias=str(item.get("alias") or str(item["name"]).lower()),
            agent_class=agent_class,
            timeout_seconds=timeout,
        ))

    return _validate_identities(identities)


def _validate_identities(identities: List[AgentIdentity]) -> Tuple[AgentIdentity, ...]:
    names = [identity.name for identity in identities]
    if len(set(names)) != len(names):
        raise ConfigError(f"Duplicate agent names in roster: {names}")

    primaries = [identity for identity in identities if identity.is_primary]
    if len(primaries) != 1:
        raise ConfigError(f"Roster must have exactly one primary agent, found {len(primaries)}")

    for identity in identities:
        if identity.timeout_seconds <= 0:
            raise ConfigError(f"Timeout for {identity.name} must be positive")

    return tuple(identities)


# ============================================================================
# SETTINGS
# ============================================================================

@dataclass(frozen=True)
class Settings:
    """Process-wide settings, constructed once at startup."""
    agents_root: Path = DEFAULT_AGENTS_ROOT
    data_dir: Path = DEFAULT_DATA_DIR
    profiles_file: Optional[Path] = None
    registry_file: Optional[Path] = None
    identities: Tuple[AgentIdentity, ...] = field(default_factory=build_identities)
    primary_session_key: str = PRIMARY_SESSION_KEY
    status_ttl: float = STATUS_TTL_SECONDS
    tail_bytes: int = TAIL_READ_BYTES
    debounce_ms: int = WATCH_DEBOUNCE_MS
    force_polling: bool = False
    registration_ttl: Optional[float] = None
    host: str = DEFAULT_HOST
    port: int = DEFAULT_PORT
    log_level: str = "info"

    @property
    def profiles_path(self) -> Path:
        return self.profiles_file or self.data_dir / PROFILES_FILENAME

    @property
    def registry_path(self) -> Path:
        return self.registry_file or self.data_dir / REGISTRY_FILENAME

    @property
    def primary(self) -> AgentIdentity:
        for identity in self.identities:
            if identity.is_primary:
                return identity
        raise ConfigError("No primary agent configured")

    def identity(self, name: str) -> Optional[AgentIdentity]:
        for identity in self.identities:
            if identity.name == name:
                return identity
        return None

    def session_dirs(self) -> List[Path]:
        """Session directories of all agents, one per distinct alias, in roster order."""
        dirs: List[Path] = []
        for identity in self.identities:
            directory = self.agents_root / identity.alias / "sessions"
            if directory not in dirs:
                dirs.append(directory)
        return dirs

    def with_overrides(self, **changes) -> "Settings":
        return replace(self, **changes)

    @classmethod
    def from_env(cls, env: Optional[Mapping[str, str]] = None) -> "Settings":
        """
        Build settings from environment variables.

        Args:
            env: Mapping to read from (defaults to os.environ)

        Raises:
            ConfigError: If a numeric variable cannot be parsed
        """
        env = os.environ if env is None else env

        primary_timeout = _env_float(env, "FACILITY_PRIMARY_TIMEOUT", PRIMARY_TIMEOUT_SECONDS)
        subordinate_timeout = _env_float(env, "FACILITY_SUBORDINATE_TIMEOUT", SUBORDINATE_TIMEOUT_SECONDS)

        identities_path = env.get("FACILITY_IDENTITIES_PATH")
        if identities_path:
            identities = load_identities(Path(identities_path).expanduser(), primary_timeout, subordinate_timeout)
        else:
            identities = build_identities(DEFAULT_ROSTER, primary_timeout, subordinate_timeout)

        profiles_file = env.get("FACILITY_PROFILES_PATH")
        registry_file = env.get("FACILITY_REGISTRY_PATH")
        registration_ttl = env.get("FACILITY_REGISTRATION_TTL")

        settings = cls(
            agents_root=Path(env.get("FACILITY_AGENTS_ROOT", str(DEFAULT_AGENTS_ROOT))).expanduser(),
            data_dir=Path(env.get("FACILITY_DATA_DIR", str(DEFAULT_DATA_DIR))).expanduser(),
            profiles_file=Path(profiles_file).expanduser() if profiles_file else None,
            registry_file=Path(registry_file).expanduser() if registry_file else None,
            identities=identities,
            primary_session_key=env.get("FACILITY_PRIMARY_SESSION_KEY", PRIMARY_SESSION_KEY),
            status_ttl=_env_float(env, "FACILITY_STATUS_TTL", STATUS_TTL_SECONDS),
            tail_bytes=_env_int(env, "FACILITY_TAIL_BYTES", TAIL_READ_BYTES),
            debounce_ms=_env_int(env, "FACILITY_WATCH_DEBOUNCE_MS", WATCH_DEBOUNCE_MS),
            force_polling=_env_bool(env, "FACILITY_WATCH_POLLING", False),
            registration_ttl=_env_float(env, "FACILITY_REGISTRATION_TTL", 0.0) if registration_ttl else None,
            host=env.get("FACILITY_HOST", DEFAULT_HOST),
            port=_env_int(env, "FACILITY_PORT", DEFAULT_PORT),
            log_level=env.get("FACILITY_LOG_LEVEL", "info").lower(),
        )

        if settings.tail_bytes <= 0:
            raise ConfigError("FACILITY_TAIL_BYTES must be positive")

        logger.debug(f"Settings loaded: agents_root={settings.agents_root}, data_dir={settings.data_dir}")
        return settings


def _env_float(env: Mapping[str, str], name: str, default: float) -> float:
    value = env.get(name)
    if value is None or value == "":
        return default
    try:
        return float(value)
    except ValueError as e:
        raise ConfigError(f"{name} must be a number, got {value!r}") from e


def _env_int(env: Mapping[str, str], name: str, default: int) -> int:
    value = env.get(name)
    if value is None or value == "":
        return default
    try:
        return int(value)
    except ValueError as e:
        raise ConfigError(f"{name} must be an integer, got {value!r}") from e


def _env_bool(env: Mapping[str, str], name: str, default: bool) -> bool:
    value = env.get(name)
    if value is None or value == "":
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")
