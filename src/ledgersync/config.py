"""Configuration management for ledgersync."""

import json
import os
from pathlib import Path
from typing import Any

from ledgersync.fetch import DEFAULT_RETRY_CONFIGS, RetryConfig
from ledgersync.identity import DEFAULT_OWNER_ID

# Default config filename
CONFIG_FILENAME = "config.json"
STORAGE_FILENAME = "ledger.db"

DEFAULT_HISTORY_DAYS = 90
DEFAULT_SOLANA_RPC_URL = "https://api.mainnet-beta.solana.com"
DEFAULT_JUPITER_PRICE_URL = "https://price.jup.ag/v6/price"
DEFAULT_COINGECKO_URL = "https://api.coingecko.com/api/v3"


def get_config_dir() -> Path:
    """Get the config directory path (XDG compliant)."""
    xdg_config_home = os.getenv("XDG_CONFIG_HOME", str(Path.home() / ".config"))
    return Path(xdg_config_home) / "ledgersync"


def get_config_path() -> Path:
    """Get the default config file path."""
    return get_config_dir() / CONFIG_FILENAME


def find_config_file() -> Path | None:
    """Find the config file in standard locations.

    Searches for config in the following order:
    1. config.json in current directory
    2. XDG config: ~/.config/ledgersync/config.json
    """
    config_paths = [
        Path(CONFIG_FILENAME),
        get_config_path(),
    ]

    for path in config_paths:
        if path.exists():
            return path

    return None


def load_json_config(config_path: Path) -> dict[str, Any]:
    """Load configuration from a JSON file."""
    with open(config_path) as f:
        return json.load(f)  # type: ignore[no-any-return]


def save_json_config(config: dict[str, Any], config_path: Path | None = None) -> Path:
    """Save configuration to a JSON file.

    Args:
        config: Configuration dictionary to save
        config_path: Path to save to (defaults to XDG config location)

    Returns:
        Path where config was saved
    """
    if config_path is None:
        config_path = get_config_path()

    config_path.parent.mkdir(parents=True, exist_ok=True)

    with open(config_path, "w") as f:
        json.dump(config, f, indent=2)
        f.write("\n")

    return config_path


def load_config(config_path: Path | None = None) -> dict[str, Any] | None:
    """Load configuration from config file.

    Args:
        config_path: Explicit path to config.json file

    Returns:
        Loaded config dict or None if not found
    """
    if config_path:
        return load_json_config(config_path)

    config_file = find_config_file()
    if config_file:
        return load_json_config(config_file)

    return None


def config_exists() -> bool:
    """Check if any config file exists."""
    return find_config_file() is not None


def get_owner_id(config: dict[str, Any] | None = None) -> str:
    """Get the owner id the CLI acts as."""
    if config and config.get("owner_id"):
        return str(config["owner_id"])
    return DEFAULT_OWNER_ID


def get_storage_path(config: dict[str, Any] | None = None) -> Path:
    """Get the ledger database file path (defaults to the config directory)."""
    if config and config.get("storage_path"):
        return Path(config["storage_path"]).expanduser()
    return get_config_dir() / STORAGE_FILENAME


def get_database_url(config: dict[str, Any] | None = None) -> str:
    """Get the SQLAlchemy database URL.

    An explicit ``database_url`` wins; otherwise a SQLite file at the
    storage path is used.
    """
    if config and config.get("database_url"):
        return str(config["database_url"])
    return f"sqlite:///{get_storage_path(config)}"


def get_history_days(config: dict[str, Any] | None = None) -> int:
    """Get how many days of SimpleFIN transactions each sync requests."""
    if config:
        days = config.get("simplefin", {}).get("history_days")
        if days:
            return int(days)
    return DEFAULT_HISTORY_DAYS


def get_solana_rpc_url(
    config: dict[str, Any] | None = None,
    override: str | None = None,
) -> str:
    """Get the Solana RPC endpoint.

    Precedence: explicit override, SOLANA_RPC_URL environment variable,
    config file, public mainnet endpoint.
    """
    if override:
        return override

    if env_url := os.getenv("SOLANA_RPC_URL"):
        return env_url

    if config:
        if rpc_url := config.get("solana", {}).get("rpc_url"):
            return rpc_url  # type: ignore[no-any-return]

    return DEFAULT_SOLANA_RPC_URL


def get_price_urls(config: dict[str, Any] | None = None) -> dict[str, str]:
    """Get the Jupiter and CoinGecko base URLs."""
    prices = (config or {}).get("prices", {})
    return {
        "jupiter": prices.get("jupiter_url") or DEFAULT_JUPITER_PRICE_URL,
        "coingecko": prices.get("coingecko_url") or DEFAULT_COINGECKO_URL,
    }


def get_retry_config(config: dict[str, Any] | None, call_class: str) -> RetryConfig:
    """Get the retry budget for a call class (claim, bulk, price, rpc).

    Values in the config's ``retry`` section override the built-in preset
    field by field.

    Raises:
        KeyError: If the call class is unknown
    """
    preset = DEFAULT_RETRY_CONFIGS[call_class]
    if not config:
        return preset

    overrides = config.get("retry", {}).get(call_class, {})
    return RetryConfig(
        max_retries=int(overrides.get("max_retries", preset.max_retries)),
        base_delay_ms=int(overrides.get("base_delay_ms", preset.base_delay_ms)),
        timeout_ms=int(overrides.get("timeout_ms", preset.timeout_ms)),
    )


def create_default_config() -> dict[str, Any]:
    """Create a default configuration."""
    return {
        "owner_id": DEFAULT_OWNER_ID,
        "storage_path": None,
        "database_url": None,
        "simplefin": {
            "history_days": DEFAULT_HISTORY_DAYS,
        },
        "solana": {
            "rpc_url": None,
        },
        "prices": {
            "jupiter_url": None,
            "coingecko_url": None,
        },
        "retry": {
            name: {
                "max_retries": preset.max_retries,
                "base_delay_ms": preset.base_delay_ms,
                "timeout_ms": preset.timeout_ms,
            }
            for name, preset in DEFAULT_RETRY_CONFIGS.items()
        },
    }
