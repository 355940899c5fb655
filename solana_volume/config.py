"""
Configuration management for the volume engine

Loads settings from environment variables and .env file.
Includes logging configuration with file output and correlation ID support.
"""

import os
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional, List

from dotenv import load_dotenv


def _load_env_file():
    """Load .env file from project root"""
    current = Path(__file__).parent.parent  # solana_volume package parent
    env_file = current / ".env"

    if env_file.exists():
        load_dotenv(env_file)


# Load .env on module import
_load_env_file()


def _get_env(key: str, default: Optional[str] = "") -> Optional[str]:
    """Get environment variable with default"""
    value = os.getenv(key)
    if value is None:
        return default
    return value


def _get_env_float(key: str, default: float) -> float:
    """Get environment variable as float"""
    value = os.getenv(key)
    if value is None:
        return default
    try:
        return float(value)
    except ValueError:
        logging.getLogger(__name__).warning(
            f"Invalid float value for {key}='{value}', using default={default}"
        )
        return default


def _get_env_int(key: str, default: int) -> int:
    """Get environment variable as int"""
    value = os.getenv(key)
    if value is None:
        return default
    try:
        return int(value)
    except ValueError:
        logging.getLogger(__name__).warning(
            f"Invalid int value for {key}='{value}', using default={default}"
        )
        return default


def _get_env_bool(key: str, default: bool) -> bool:
    """Get environment variable as bool"""
    value = os.getenv(key)
    if value is None:
        return default
    return value.lower() in ("true", "1", "yes", "on")


@dataclass
class RpcConfig:
    """RPC client configuration"""
    url: str = field(default_factory=lambda: _get_env("SOLANA_RPC_URL", "https://api.devnet.solana.com"))
    # Empty means derive from url (https -> wss)
    ws_url: str = field(default_factory=lambda: _get_env("SOLANA_WS_URL", ""))
    timeout_seconds: float = field(default_factory=lambda: _get_env_float("RPC_TIMEOUT_SECONDS", 30.0))
    max_retries: int = field(default_factory=lambda: _get_env_int("RPC_MAX_RETRIES", 3))
    retry_delay_seconds: float = field(default_factory=lambda: _get_env_float("RPC_RETRY_DELAY_SECONDS", 0.5))
    commitment: str = field(default_factory=lambda: _get_env("RPC_COMMITMENT", "confirmed"))
    # "public" (300ms / 3 in flight) or "premium" (100ms / 10 in flight)
    rate_profile: str = field(default_factory=lambda: _get_env("RPC_RATE_PROFILE", "public"))
    network: str = field(default_factory=lambda: _get_env("SOLANA_NETWORK", "devnet"))


@dataclass
class SignerConfig:
    """Signer configuration for local keypair signing"""
    keypair_path: str = field(default_factory=lambda: _get_env("SOLANA_KEYPAIR_PATH", ""))


@dataclass
class TxConfig:
    """Transaction submission configuration"""
    compute_units: int = field(default_factory=lambda: _get_env_int("TX_COMPUTE_UNITS", 200_000))
    skip_preflight: bool = field(default_factory=lambda: _get_env_bool("TX_SKIP_PREFLIGHT", False))
    preflight_commitment: str = field(default_factory=lambda: _get_env("TX_PREFLIGHT_COMMITMENT", "confirmed"))
    max_retries: int = field(default_factory=lambda: _get_env_int("TX_MAX_RETRIES", 3))
    # Base delay for exponential backoff between attempts
    retry_delay: float = field(default_factory=lambda: _get_env_float("TX_RETRY_DELAY", 1.0))
    confirmation_timeout: float = field(default_factory=lambda: _get_env_float("TX_CONFIRMATION_TIMEOUT", 60.0))
    poll_interval: float = field(default_factory=lambda: _get_env_float("TX_POLL_INTERVAL", 1.0))
    # Fixed delay after a stale blockhash
    stale_reference_delay: float = field(default_factory=lambda: _get_env_float("TX_STALE_REFERENCE_DELAY", 0.5))
    # Multiplier applied on top of exponential backoff for rate limits
    rate_limit_backoff: float = field(default_factory=lambda: _get_env_float("TX_RATE_LIMIT_BACKOFF", 3.0))
    max_backoff: float = field(default_factory=lambda: _get_env_float("TX_MAX_BACKOFF", 30.0))
    base_fee_lamports: int = field(default_factory=lambda: _get_env_int("TX_BASE_FEE_LAMPORTS", 5_000))
    use_subscription: bool = field(default_factory=lambda: _get_env_bool("TX_USE_SUBSCRIPTION", True))
    fetch_actual_fee: bool = field(default_factory=lambda: _get_env_bool("TX_FETCH_ACTUAL_FEE", True))
    dry_run: bool = field(default_factory=lambda: _get_env_bool("TX_DRY_RUN", False))


@dataclass
class FeeConfig:
    """Priority fee oracle and service fee configuration"""
    # Microlamports per compute unit when no samples are available
    default_priority_fee: int = field(default_factory=lambda: _get_env_int("FEE_DEFAULT_PRIORITY", 5_000))
    percentile: int = field(default_factory=lambda: _get_env_int("FEE_PERCENTILE", 90))
    # Percent of the current fee above which a fee counts as a spike (150 = 1.5x)
    spike_factor: int = field(default_factory=lambda: _get_env_int("FEE_SPIKE_FACTOR", 150))
    optimal_factor: int = field(default_factory=lambda: _get_env_int("FEE_OPTIMAL_FACTOR", 120))
    service_fee_numerator: int = field(default_factory=lambda: _get_env_int("SERVICE_FEE_NUMERATOR", 1))
    service_fee_denominator: int = field(default_factory=lambda: _get_env_int("SERVICE_FEE_DENOMINATOR", 1000))
    service_fee_wallet: str = field(default_factory=lambda: _get_env("SERVICE_FEE_WALLET", ""))


@dataclass
class FundingConfig:
    """Batch funding configuration"""
    max_per_chunk: int = field(default_factory=lambda: _get_env_int("FUNDING_MAX_PER_CHUNK", 5))
    recheck_balance: bool = field(default_factory=lambda: _get_env_bool("FUNDING_RECHECK_BALANCE", True))
    continue_on_error: bool = field(default_factory=lambda: _get_env_bool("FUNDING_CONTINUE_ON_ERROR", True))


@dataclass
class WorkflowConfig:
    """Orchestrated run defaults"""
    precision: int = field(default_factory=lambda: _get_env_int("WORKFLOW_PRECISION", 9))
    # Rent-exempt minimum for a zero-data system account
    rent_floor_lamports: int = field(default_factory=lambda: _get_env_int("WORKFLOW_RENT_FLOOR", 890_880))
    # SPL token moved by runs; empty for native SOL
    mint: str = field(default_factory=lambda: os.getenv("WORKFLOW_MINT", ""))
    # Rent-exempt minimum for a 165-byte token account
    token_account_rent_lamports: int = field(
        default_factory=lambda: _get_env_int("WORKFLOW_TOKEN_ACCOUNT_RENT", 2_039_280)
    )


def _get_default_log_path() -> str:
    """Get default log file path under solana_volume/log/ with UTC timestamp"""
    from datetime import datetime, timezone
    timestamp = datetime.now(timezone.utc).strftime("%Y%m%d_%H%M%S")
    log_dir = Path(__file__).parent / "log"
    return str(log_dir / f"solana_volume_{timestamp}.log")


@dataclass
class LoggingConfig:
    """
    Logging configuration with file output and correlation ID support.

    Default log location: solana_volume/log/solana_volume_<timestamp>.log

    Environment variables:
        LOG_FILE: Path to log file (overrides default)
        LOG_LEVEL: DEBUG, INFO, WARNING, ERROR, CRITICAL (default: INFO)
        LOG_FORMAT: Custom log format string
        LOG_CONSOLE: Enable console output (default: true)
        LOG_MAX_BYTES: Max log file size before rotation (default: 10MB)
        LOG_BACKUP_COUNT: Number of backup files to keep (default: 5)
    """
    log_file: str = field(default_factory=lambda: _get_env("LOG_FILE", _get_default_log_path()))
    log_level: str = field(default_factory=lambda: _get_env("LOG_LEVEL", "INFO"))
    log_format: str = field(default_factory=lambda: _get_env(
        "LOG_FORMAT",
        "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    ))
    console_output: bool = field(default_factory=lambda: _get_env_bool("LOG_CONSOLE", True))
    max_bytes: int = field(default_factory=lambda: _get_env_int("LOG_MAX_BYTES", 10 * 1024 * 1024))  # 10MB
    backup_count: int = field(default_factory=lambda: _get_env_int("LOG_BACKUP_COUNT", 5))

    @property
    def level(self) -> int:
        """Get numeric log level"""
        return getattr(logging, self.log_level.upper(), logging.INFO)


@dataclass
class Config:
    """
    Main configuration container

    Loads all settings from environment variables and .env file.

    Usage:
        from solana_volume.config import config

        print(config.rpc.url)
        print(config.fee.spike_factor)
    """
    rpc: RpcConfig = field(default_factory=RpcConfig)
    signer: SignerConfig = field(default_factory=SignerConfig)
    tx: TxConfig = field(default_factory=TxConfig)
    fee: FeeConfig = field(default_factory=FeeConfig)
    funding: FundingConfig = field(default_factory=FundingConfig)
    workflow: WorkflowConfig = field(default_factory=WorkflowConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    @classmethod
    def reload(cls) -> "Config":
        """Reload configuration from environment"""
        _load_env_file()
        return cls()


# Global config instance
config = Config()


def get_config() -> Config:
    """Get global configuration instance"""
    return config


def reload_config() -> Config:
    """Reload and return new configuration"""
    global config
    config = Config.reload()
    return config


def setup_logging(
    log_config: Optional[LoggingConfig] = None,
    logger_name: str = "solana_volume",
) -> logging.Logger:
    """
    Set up logging based on configuration.

    Creates handlers for file and/or console output with optional rotation.
    The log file directory is created automatically if it doesn't exist.

    Args:
        log_config: Logging configuration (uses global config if None)
        logger_name: Name of the logger to configure (default: solana_volume)

    Returns:
        Configured logger instance

    Example:
        from solana_volume.config import LoggingConfig, setup_logging
        log_config = LoggingConfig(
            log_file="volume.log",
            log_level="DEBUG",
            console_output=True,
        )
        logger = setup_logging(log_config)
    """
    if log_config is None:
        log_config = config.logging

    logger = logging.getLogger(logger_name)
    logger.setLevel(log_config.level)

    # Close before removing to flush buffers and release file handles
    for handler in logger.handlers[:]:
        handler.close()
        logger.removeHandler(handler)

    formatter = logging.Formatter(log_config.log_format)

    handlers: List[logging.Handler] = []

    if log_config.log_file:
        from logging.handlers import RotatingFileHandler

        log_path = Path(log_config.log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)

        file_handler = RotatingFileHandler(
            log_config.log_file,
            maxBytes=log_config.max_bytes,
            backupCount=log_config.backup_count,
            encoding='utf-8',
        )
        file_handler.setLevel(log_config.level)
        file_handler.setFormatter(formatter)
        handlers.append(file_handler)

    if log_config.console_output:
        console_handler = logging.StreamHandler()
        console_handler.setLevel(log_config.level)
        console_handler.setFormatter(formatter)
        handlers.append(console_handler)

    for handler in handlers:
        logger.addHandler(handler)

    # Child loggers inherit handlers from parent
    for name in [
        f"{logger_name}.infra",
        f"{logger_name}.modules",
    ]:
        logging.getLogger(name).setLevel(log_config.level)

    if log_config.log_file:
        logger.info(f"Logging initialized: file={log_config.log_file}, level={log_config.log_level}")

    return logger


def enable_file_logging(
    log_file: Optional[str] = None,
    level: str = "INFO",
    console: bool = True,
) -> logging.Logger:
    """
    Quick setup for file logging.

    Args:
        log_file: Path to log file (defaults to solana_volume/log/)
        level: Log level (DEBUG, INFO, WARNING, ERROR)
        console: Also output to console

    Returns:
        Configured logger
    """
    if log_file is None:
        # Reuse the global path to keep one timestamp per process
        log_file = config.logging.log_file

    log_config = LoggingConfig(
        log_file=log_file,
        log_level=level,
        console_output=console,
    )
    return setup_logging(log_config)
