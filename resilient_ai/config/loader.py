"""
Configuration management and loading.

Handles provider definitions and orchestrator settings.
"""

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

import yaml

DEFAULT_CONFIG_ENV = "RESILIENT_AI_CONFIG"


class ResponseShape(Enum):
    """How a provider wraps the generated text in its response body."""
    CHAT = "chat"                 # choices[0].message.content
    COMPLETION = "completion"     # choices[0].text
    GENERATIONS = "generations"   # generations[0].text
    MOCK = "mock"                 # canned in-process answer, no network


class ProviderTier(Enum):
    """Service mode a provider represents when it is the active one."""
    FREE = "free"
    CUSTOM = "custom"
    MOCK = "mock"


@dataclass(frozen=True)
class ProviderConfig:
    """One remote inference provider. Immutable after load."""
    id: str
    priority: int
    daily_limit: int
    monthly_limit: int
    min_interval_ms: int
    endpoint: str
    response_shape: ResponseShape
    model: str = ""
    tier: ProviderTier = ProviderTier.FREE
    max_tokens: int = 1000
    temperature: float = 0.7
    timeout_ms: Optional[int] = None

    def __post_init__(self):
        """Validate limits and shape-dependent fields."""
        if not self.id or not self.id.strip():
            raise ValueError("provider id cannot be empty")
        if ":" in self.id:
            raise ValueError(f"provider id '{self.id}' cannot contain ':'")
        if self.daily_limit < 0:
            raise ValueError(f"daily_limit for '{self.id}' must be >= 0")
        if self.monthly_limit < 0:
            raise ValueError(f"monthly_limit for '{self.id}' must be >= 0")
        if self.min_interval_ms < 0:
            raise ValueError(f"min_interval_ms for '{self.id}' must be >= 0")
        if self.max_tokens <= 0:
            raise ValueError(f"max_tokens for '{self.id}' must be > 0")
        if self.timeout_ms is not None and self.timeout_ms <= 0:
            raise ValueError(f"timeout_ms for '{self.id}' must be > 0")
        if self.response_shape != ResponseShape.MOCK and not self.endpoint:
            raise ValueError(f"endpoint for '{self.id}' is required")
        if (self.response_shape == ResponseShape.MOCK) != (self.tier == ProviderTier.MOCK):
            raise ValueError(
                f"provider '{self.id}': response_shape 'mock' and tier 'mock' go together"
            )

    @property
    def needs_credential(self) -> bool:
        return self.response_shape != ResponseShape.MOCK


@dataclass(frozen=True)
class OrchestratorSettings:
    """Tunables shared by all providers."""
    request_timeout_ms: int = 12000
    max_wait_ms: int = 1500
    deadline_ms: int = 30000
    cache_ttl_ms: int = 30 * 60 * 1000
    cache_capacity: int = 50
    db_path: str = ".resilient-ai.db"

    def __post_init__(self):
        """Validate settings values are positive."""
        for name in ("request_timeout_ms", "deadline_ms", "cache_ttl_ms", "cache_capacity"):
            if getattr(self, name) <= 0:
                raise ValueError(f"{name} must be > 0")
        if self.max_wait_ms < 0:
            raise ValueError("max_wait_ms must be >= 0")


@dataclass(frozen=True)
class OrchestratorConfig:
    """Complete orchestrator configuration."""
    settings: OrchestratorSettings
    providers: Tuple[ProviderConfig, ...] = field(default_factory=tuple)

    def __post_init__(self):
        ids = [p.id for p in self.providers]
        duplicates = {i for i in ids if ids.count(i) > 1}
        if duplicates:
            raise ValueError(f"Duplicate provider ids: {sorted(duplicates)}")

    def ordered_providers(self) -> List[ProviderConfig]:
        """Providers sorted by priority (lowest first), ties in file order."""
        return sorted(self.providers, key=lambda p: p.priority)

    def get_provider(self, provider_id: str) -> ProviderConfig:
        """Look up a provider by id.

        Raises:
            KeyError: If no provider has that id
        """
        for provider in self.providers:
            if provider.id == provider_id:
                return provider
        raise KeyError(f"Unknown provider: {provider_id}")


_SETTINGS_KEYS = {
    'request_timeout_ms', 'max_wait_ms', 'deadline_ms',
    'cache_ttl_ms', 'cache_capacity', 'db_path'
}
_PROVIDER_REQUIRED_KEYS = {
    'id', 'priority', 'daily_limit', 'monthly_limit',
    'min_interval_ms', 'response_shape'
}
_PROVIDER_OPTIONAL_KEYS = {
    'endpoint', 'model', 'tier', 'max_tokens', 'temperature', 'timeout_ms'
}


def load_orchestrator_config(path: str) -> OrchestratorConfig:
    """Load and validate orchestrator configuration from a YAML file.

    Unknown keys are rejected rather than ignored so that a typo in a limit
    cannot silently leave a provider unthrottled.

    Args:
        path: Path to YAML configuration file

    Returns:
        Validated OrchestratorConfig object

    Raises:
        FileNotFoundError: If config file doesn't exist
        yaml.YAMLError: If YAML is invalid
        ValueError: If configuration is invalid
    """
    config_path = Path(path)
    if not config_path.exists():
        raise FileNotFoundError(f"Orchestrator config file not found: {path}")

    with open(config_path, 'r', encoding='utf-8') as f:
        try:
            raw_config = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise yaml.YAMLError(f"Invalid YAML in config file {path}: {e}")

    if not raw_config:
        raise ValueError("Configuration file is empty")
    return parse_orchestrator_config(raw_config)


def parse_orchestrator_config(raw_config: Dict[str, Any]) -> OrchestratorConfig:
    """Validate an already-decoded configuration mapping.

    Raises:
        ValueError: If configuration is invalid
    """
    if not isinstance(raw_config, dict):
        raise ValueError("Configuration must be a dictionary")

    allowed_top_keys = {'settings', 'providers'}
    unknown_keys = set(raw_config.keys()) - allowed_top_keys
    if unknown_keys:
        raise ValueError(f"Unknown configuration keys: {unknown_keys}")

    settings_data = raw_config.get('settings') or {}
    if not isinstance(settings_data, dict):
        raise ValueError("'settings' must be a dictionary")
    unknown_settings = set(settings_data.keys()) - _SETTINGS_KEYS
    if unknown_settings:
        raise ValueError(f"Unknown settings keys: {unknown_settings}")
    for key, value in settings_data.items():
        if key == 'db_path':
            if not isinstance(value, str) or not value:
                raise ValueError("'db_path' must be a non-empty string")
        elif not _is_int(value):
            raise ValueError(f"'{key}' in settings must be an integer")
    settings = OrchestratorSettings(**settings_data)

    if 'providers' not in raw_config:
        raise ValueError("Missing required 'providers' section")
    providers_data = raw_config['providers'] or []
    if not isinstance(providers_data, list):
        raise ValueError("'providers' must be a list")

    providers = []
    for index, provider_data in enumerate(providers_data):
        if not isinstance(provider_data, dict):
            raise ValueError(f"providers[{index}] must be a dictionary")
        providers.append(_parse_provider_config(provider_data, f"providers[{index}]"))

    return OrchestratorConfig(settings=settings, providers=tuple(providers))


def _is_int(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def _parse_provider_config(data: Dict, path: str) -> ProviderConfig:
    """Parse and validate a single provider entry.

    Args:
        data: Provider configuration data
        path: Path for error messages

    Returns:
        Validated ProviderConfig

    Raises:
        ValueError: If configuration is invalid
    """
    unknown_keys = set(data.keys()) - _PROVIDER_REQUIRED_KEYS - _PROVIDER_OPTIONAL_KEYS
    if unknown_keys:
        raise ValueError(f"Unknown keys in {path}: {unknown_keys}")

    missing = _PROVIDER_REQUIRED_KEYS - set(data.keys())
    if missing:
        raise ValueError(f"Missing required keys in {path}: {sorted(missing)}")

    provider_id = data['id']
    if not isinstance(provider_id, str) or not provider_id.strip():
        raise ValueError(f"'id' in {path} must be a non-empty string")

    for key in ('priority', 'daily_limit', 'monthly_limit', 'min_interval_ms'):
        if not _is_int(data[key]):
            raise ValueError(f"'{key}' in {path} must be an integer")
    for key in ('max_tokens', 'timeout_ms'):
        if key in data and not _is_int(data[key]):
            raise ValueError(f"'{key}' in {path} must be an integer")

    try:
        shape = ResponseShape(str(data['response_shape']).lower())
    except ValueError:
        valid_shapes = [s.value for s in ResponseShape]
        raise ValueError(f"'response_shape' in {path} must be one of: {valid_shapes}")

    default_tier = ProviderTier.MOCK if shape == ResponseShape.MOCK else ProviderTier.FREE
    try:
        tier = ProviderTier(str(data.get('tier', default_tier.value)).lower())
    except ValueError:
        valid_tiers = [t.value for t in ProviderTier]
        raise ValueError(f"'tier' in {path} must be one of: {valid_tiers}")

    temperature = data.get('temperature', 0.7)
    if not isinstance(temperature, (int, float)) or isinstance(temperature, bool):
        raise ValueError(f"'temperature' in {path} must be a number")
    if not 0 <= temperature <= 2:
        raise ValueError(f"'temperature' in {path} must be between 0 and 2")

    return ProviderConfig(
        id=provider_id.strip(),
        priority=data['priority'],
        daily_limit=data['daily_limit'],
        monthly_limit=data['monthly_limit'],
        min_interval_ms=data['min_interval_ms'],
        endpoint=str(data.get('endpoint') or ""),
        response_shape=shape,
        model=str(data.get('model') or ""),
        tier=tier,
        max_tokens=data.get('max_tokens', 1000),
        temperature=float(temperature),
        timeout_ms=data.get('timeout_ms'),
    )
