"""
Environment configuration for the PayLink service.

Variables are read once at startup into frozen dataclass sections. Merchant
payment settings (receive address, signing secret) are stored in MongoDB and
owned by the merchant config provider; `PaymentConfig` only seeds that record
the first time it is read.
"""

import os
import re
from typing import Mapping, Optional
from dataclasses import dataclass
from dotenv import load_dotenv
from paylink.core.exceptions import ConfigurationError
import logging

load_dotenv()

logger = logging.getLogger(__name__)

PRODUCTION = "production"

_RATE_LIMIT_PATTERN = re.compile(r"^\d+\s*/\s*(second|minute|hour|day)$")
_TRUE_VALUES = ("true", "1", "yes", "on")


@dataclass(frozen=True)
class DatabaseConfig:
    """MongoDB connection and pool settings"""
    url: str
    max_pool_size: int = 10
    min_pool_size: int = 2
    max_idle_time_ms: int = 30000
    server_selection_timeout_ms: int = 5000
    connect_timeout_ms: int = 10000
    socket_timeout_ms: int = 45000
    retry_writes: bool = True
    write_concern: int = 1


@dataclass(frozen=True)
class SecurityConfig:
    """Webhook authentication and monitoring access"""
    webhook_secret_key: Optional[str] = None
    max_webhook_age_seconds: int = 300
    monitoring_api_key: Optional[str] = None


@dataclass(frozen=True)
class PaymentConfig:
    """Seed values for the merchant settings record"""
    default_merchant_upi: str = "merchant@upi"
    default_merchant_secret: str = "change-me"
    merchant_display_name: str = "Merchant"


@dataclass(frozen=True)
class RateLimitConfig:
    """Per-route limits in slowapi notation"""
    create_rate_limit: str = "20/minute"
    webhook_rate_limit: str = "30/minute"
    api_rate_limit: str = "60/minute"


@dataclass(frozen=True)
class LoggingConfig:
    level: str = "INFO"
    log_requests: bool = True


@dataclass(frozen=True)
class AppConfig:
    database: DatabaseConfig
    security: SecurityConfig
    payment: PaymentConfig
    rate_limit: RateLimitConfig
    logging: LoggingConfig
    environment: str = "development"
    debug: bool = False

    @property
    def is_production(self) -> bool:
        return self.environment.lower() == PRODUCTION


class ConfigValidator:
    """Builds an AppConfig from environment variables"""

    # Every variable the service reads; MONGO_URL is the only mandatory one
    KNOWN_ENV_VARS = (
        "MONGO_URL",
        "ENVIRONMENT",
        "DEBUG",
        "LOG_LEVEL",
        "LOG_REQUESTS",
        "WEBHOOK_SECRET_KEY",
        "MAX_WEBHOOK_AGE_SECONDS",
        "MONITORING_API_KEY",
        "DEFAULT_MERCHANT_UPI",
        "DEFAULT_MERCHANT_SECRET",
        "MERCHANT_DISPLAY_NAME",
        "MONGO_MAX_POOL_SIZE",
        "MONGO_MIN_POOL_SIZE",
        "MONGO_MAX_IDLE_TIME_MS",
        "MONGO_SERVER_SELECTION_TIMEOUT_MS",
        "MONGO_CONNECT_TIMEOUT_MS",
        "MONGO_SOCKET_TIMEOUT_MS",
        "MONGO_RETRY_WRITES",
        "MONGO_WRITE_CONCERN",
        "CREATE_RATE_LIMIT",
        "WEBHOOK_RATE_LIMIT",
        "API_RATE_LIMIT",
    )

    @classmethod
    def validate_mongo_url(cls, url: Optional[str]) -> str:
        if not url:
            raise ConfigurationError(
                "Required environment variable MONGO_URL is not set",
                config_key="MONGO_URL",
                expected_value="mongodb://localhost:27017/paylink",
            )
        if not url.startswith(("mongodb://", "mongodb+srv://")):
            raise ConfigurationError(
                "MONGO_URL must be a mongodb:// or mongodb+srv:// URL",
                config_key="MONGO_URL",
                expected_value="mongodb://localhost:27017/paylink",
            )
        return url

    @classmethod
    def validate_rate_limit(cls, rate_limit: str, name: str = "rate_limit") -> str:
        """Accepts '<count>/<second|minute|hour|day>'."""
        if not _RATE_LIMIT_PATTERN.match(rate_limit.strip()):
            raise ConfigurationError(
                f"Invalid rate limit '{rate_limit}'",
                config_key=name,
                expected_value="10/minute",
            )
        return rate_limit.strip()

    @staticmethod
    def parse_bool(value: Optional[str], default: bool) -> bool:
        if value is None:
            return default
        return value.strip().lower() in _TRUE_VALUES

    @staticmethod
    def parse_int(value: Optional[str], default: int, low: int, high: int) -> int:
        """Integers outside [low, high] or unparsable fall back to the default."""
        try:
            parsed = int(value)
        except (TypeError, ValueError):
            return default
        if not low <= parsed <= high:
            logger.warning(f"Value {parsed} outside [{low}, {high}], using {default}")
            return default
        return parsed

    @classmethod
    def _database(cls, env: Mapping[str, str]) -> DatabaseConfig:
        return DatabaseConfig(
            url=cls.validate_mongo_url(env.get("MONGO_URL")),
            max_pool_size=cls.parse_int(env.get("MONGO_MAX_POOL_SIZE"), 10, 1, 100),
            min_pool_size=cls.parse_int(env.get("MONGO_MIN_POOL_SIZE"), 2, 1, 50),
            max_idle_time_ms=cls.parse_int(env.get("MONGO_MAX_IDLE_TIME_MS"), 30000, 1000, 300000),
            server_selection_timeout_ms=cls.parse_int(
                env.get("MONGO_SERVER_SELECTION_TIMEOUT_MS"), 5000, 1000, 30000
            ),
            connect_timeout_ms=cls.parse_int(env.get("MONGO_CONNECT_TIMEOUT_MS"), 10000, 1000, 60000),
            socket_timeout_ms=cls.parse_int(env.get("MONGO_SOCKET_TIMEOUT_MS"), 45000, 1000, 120000),
            retry_writes=cls.parse_bool(env.get("MONGO_RETRY_WRITES"), True),
            write_concern=cls.parse_int(env.get("MONGO_WRITE_CONCERN"), 1, 1, 5),
        )

    @classmethod
    def _security(cls, env: Mapping[str, str]) -> SecurityConfig:
        return SecurityConfig(
            webhook_secret_key=env.get("WEBHOOK_SECRET_KEY") or None,
            max_webhook_age_seconds=cls.parse_int(env.get("MAX_WEBHOOK_AGE_SECONDS"), 300, 10, 3600),
            monitoring_api_key=env.get("MONITORING_API_KEY") or None,
        )

    @classmethod
    def _payment(cls, env: Mapping[str, str]) -> PaymentConfig:
        defaults = PaymentConfig()
        return PaymentConfig(
            default_merchant_upi=env.get("DEFAULT_MERCHANT_UPI", defaults.default_merchant_upi),
            default_merchant_secret=env.get("DEFAULT_MERCHANT_SECRET", defaults.default_merchant_secret),
            merchant_display_name=env.get("MERCHANT_DISPLAY_NAME", defaults.merchant_display_name),
        )

    @classmethod
    def _rate_limits(cls, env: Mapping[str, str]) -> RateLimitConfig:
        defaults = RateLimitConfig()
        return RateLimitConfig(
            create_rate_limit=cls.validate_rate_limit(
                env.get("CREATE_RATE_LIMIT", defaults.create_rate_limit), "CREATE_RATE_LIMIT"
            ),
            webhook_rate_limit=cls.validate_rate_limit(
                env.get("WEBHOOK_RATE_LIMIT", defaults.webhook_rate_limit), "WEBHOOK_RATE_LIMIT"
            ),
            api_rate_limit=cls.validate_rate_limit(
                env.get("API_RATE_LIMIT", defaults.api_rate_limit), "API_RATE_LIMIT"
            ),
        )

    @classmethod
    def load_config(cls, env: Optional[Mapping[str, str]] = None) -> AppConfig:
        """
        Read and validate every section.

        Raises:
            ConfigurationError: If MONGO_URL or a rate limit is missing or malformed
        """
        env = os.environ if env is None else env
        logger.info("Loading PayLink configuration")

        app_config = AppConfig(
            database=cls._database(env),
            security=cls._security(env),
            payment=cls._payment(env),
            rate_limit=cls._rate_limits(env),
            logging=LoggingConfig(
                level=env.get("LOG_LEVEL", "INFO"),
                log_requests=cls.parse_bool(env.get("LOG_REQUESTS"), True),
            ),
            environment=env.get("ENVIRONMENT", "development"),
            debug=cls.parse_bool(env.get("DEBUG"), False),
        )

        if not app_config.security.webhook_secret_key:
            logger.warning("WEBHOOK_SECRET_KEY is not set; webhook deliveries will be rejected")
        if app_config.is_production and app_config.payment.default_merchant_secret == "change-me":
            logger.warning("DEFAULT_MERCHANT_SECRET still has its placeholder value")

        logger.info(
            f"Configuration loaded ({app_config.environment}); rate limits "
            f"create={app_config.rate_limit.create_rate_limit}, "
            f"webhook={app_config.rate_limit.webhook_rate_limit}, "
            f"api={app_config.rate_limit.api_rate_limit}"
        )
        return app_config


_app_config: Optional[AppConfig] = None


def get_config() -> AppConfig:
    """
    Raises:
        ConfigurationError: If load_config() has not run yet
    """
    if _app_config is None:
        raise ConfigurationError(
            "Configuration accessed before load_config()",
            config_key="config_not_loaded",
        )
    return _app_config


def load_config() -> AppConfig:
    global _app_config

    _app_config = ConfigValidator.load_config()
    return _app_config
