"""Environment configuration for Lambda functions."""
import os
from dataclasses import dataclass

from .exceptions import ConfigurationError
from .scan_limits import ScanLimits

STORE_BACKENDS = ("file", "memory", "dynamodb")

# Lambda only allows writes under /tmp; STORE_PATH must point somewhere writable
DEFAULT_STORE_PATH = "/tmp/accounts.json"

_TRUE_VALUES = ("1", "true", "yes", "on")
_FALSE_VALUES = ("0", "false", "no", "off")


def _env_int(key: str, default: int) -> int:
    """Read a non-negative integer from the environment.

    Raises:
        ConfigurationError: If the value is not a non-negative integer
    """
    raw = os.environ.get(key)
    if raw is None or raw.strip() == "":
        return default
    try:
        value = int(raw)
    except ValueError:
        raise ConfigurationError(
            f"{key} must be an integer, got {raw!r}", config_key=key
        ) from None
    if value < 0:
        raise ConfigurationError(f"{key} must not be negative", config_key=key)
    return value


def _env_float(key: str, default: float) -> float:
    raw = os.environ.get(key)
    if raw is None or raw.strip() == "":
        return default
    try:
        return float(raw)
    except ValueError:
        raise ConfigurationError(
            f"{key} must be a number, got {raw!r}", config_key=key
        ) from None


def _env_bool(key: str, default: bool) -> bool:
    raw = os.environ.get(key)
    if raw is None or raw.strip() == "":
        return default
    value = raw.strip().lower()
    if value in _TRUE_VALUES:
        return True
    if value in _FALSE_VALUES:
        return False
    raise ConfigurationError(f"{key} must be a boolean, got {raw!r}", config_key=key)


@dataclass
class Config:
    """Application configuration loaded from environment variables."""

    api_base_url: str
    environment: str
    log_level: str
    shared_secret: str | None = None
    shared_secret_param: str | None = None
    analyze_path: str = "/analyze"
    health_path: str = "/health"
    free_scan_limit: int = ScanLimits.FREE_SCAN_LIMIT
    rate_window_ms: int = ScanLimits.RATE_WINDOW_MS
    rate_max_requests: int = ScanLimits.RATE_MAX_REQUESTS
    request_timeout_ms: int = ScanLimits.REQUEST_TIMEOUT_MS
    privileged_account_id: str | None = None
    privileged_bypasses_rate_limit: bool = True
    paid_bypasses_rate_limit: bool = False
    store_backend: str = "file"
    store_path: str = DEFAULT_STORE_PATH
    table_name: str | None = None
    price_basic: float = ScanLimits.PRICE_BASIC
    pay_to: str = ""

    @classmethod
    def from_env(cls) -> "Config":
        """Load configuration from environment variables.

        Returns:
            Config instance with values from environment

        Raises:
            ConfigurationError: If required environment variables are missing
                or hold invalid values
        """
        api_base_url = os.environ.get("API_BASE_URL")
        if not api_base_url:
            raise ConfigurationError(
                "API_BASE_URL environment variable is required",
                config_key="API_BASE_URL",
            )

        store_backend = os.environ.get("STORE_BACKEND", "file").lower()
        if store_backend not in STORE_BACKENDS:
            raise ConfigurationError(
                f"STORE_BACKEND must be one of {', '.join(STORE_BACKENDS)}",
                config_key="STORE_BACKEND",
            )

        table_name = os.environ.get("TABLE_NAME")
        if store_backend == "dynamodb" and not table_name:
            raise ConfigurationError(
                "TABLE_NAME environment variable is required for the dynamodb store",
                config_key="TABLE_NAME",
            )

        rate_max_requests = _env_int("RATE_MAX_REQUESTS", ScanLimits.RATE_MAX_REQUESTS)
        if rate_max_requests < 1:
            raise ConfigurationError(
                "RATE_MAX_REQUESTS must be at least 1", config_key="RATE_MAX_REQUESTS"
            )

        return cls(
            api_base_url=api_base_url.rstrip("/"),
            environment=os.environ.get("ENVIRONMENT", "dev"),
            log_level=os.environ.get("POWERTOOLS_LOG_LEVEL", "INFO"),
            shared_secret=os.environ.get("SHARED_SECRET") or None,
            shared_secret_param=os.environ.get("SHARED_SECRET_PARAM") or None,
            analyze_path=os.environ.get("ANALYZE_PATH", "/analyze"),
            health_path=os.environ.get("HEALTH_PATH", "/health"),
            free_scan_limit=_env_int("FREE_SCAN_LIMIT", ScanLimits.FREE_SCAN_LIMIT),
            rate_window_ms=_env_int("RATE_WINDOW_MS", ScanLimits.RATE_WINDOW_MS),
            rate_max_requests=rate_max_requests,
            request_timeout_ms=_env_int(
                "REQUEST_TIMEOUT_MS", ScanLimits.REQUEST_TIMEOUT_MS
            ),
            privileged_account_id=os.environ.get("PRIVILEGED_ACCOUNT_ID") or None,
            privileged_bypasses_rate_limit=_env_bool(
                "PRIVILEGED_BYPASSES_RATE_LIMIT", True
            ),
            paid_bypasses_rate_limit=_env_bool("PAID_BYPASSES_RATE_LIMIT", False),
            store_backend=store_backend,
            store_path=os.environ.get("STORE_PATH", DEFAULT_STORE_PATH),
            table_name=table_name,
            price_basic=_env_float("PRICE_BASIC", ScanLimits.PRICE_BASIC),
            pay_to=os.environ.get("PAY_TO", ""),
        )

    @property
    def is_production(self) -> bool:
        """Check if running in production environment."""
        return self.environment == "prod"

    def is_owner(self, account_id: str) -> bool:
        """Check if account_id is the configured privileged identity."""
        return (
            self.privileged_account_id is not None
            and account_id == self.privileged_account_id
        )


def get_config() -> Config:
    """Get cached configuration instance.

    Returns:
        Config instance (cached after first call)
    """
    if not hasattr(get_config, "_config"):
        get_config._config = Config.from_env()
    return get_config._config


def reset_config() -> None:
    """Drop the cached configuration (for testing)."""
    if hasattr(get_config, "_config"):
        del get_config._config
