"""Configuration management using Pydantic Settings."""

import logging
from pathlib import Path

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)

DEFAULT_API_BASE_URL = "https://api.gyazo.com"


class GyazoConfig(BaseSettings):
    """Configuration for Gyazo synchronization.

    Attributes:
        access_token: Gyazo API access token (prefer the keyring, see
                      ``gyazobridge set-token``)
        vault_path: Root of the markdown vault the notes are written into
        save_directory: Folder inside the vault holding one note per image
        fetch_interval: Hours between periodic syncs, 0 disables them
        detect_deleted_images: Look for notes whose image vanished upstream
        delete_notes_for_deleted_images: Delete such notes instead of only
                                         reporting them
        max_images_to_fetch: Upper bound on images listed per run
    """

    access_token: str | None = None
    vault_path: Path = Field(default_factory=lambda: Path.home() / "Notes")
    save_directory: str = "Gyazo"
    fetch_interval: int = 0
    detect_deleted_images: bool = True
    delete_notes_for_deleted_images: bool = False
    max_images_to_fetch: int = 40
    api_base_url: str = DEFAULT_API_BASE_URL
    request_timeout: float = 30.0

    @field_validator("vault_path", mode="before")
    @classmethod
    def expand_path(cls, v: str | Path) -> Path:
        """Expand user home directory in the vault path."""
        return Path(v).expanduser().resolve()

    @field_validator("save_directory", mode="before")
    @classmethod
    def validate_save_directory(cls, v: str) -> str:
        """Normalize the save directory to a vault-relative POSIX path."""
        normalized = str(v).replace("\\", "/").strip().strip("/")
        if not normalized:
            raise ValueError("Save directory must not be empty")
        if ".." in normalized.split("/"):
            raise ValueError("Save directory must stay inside the vault")
        return normalized

    @field_validator("fetch_interval")
    @classmethod
    def validate_fetch_interval(cls, v: int) -> int:
        """Negative intervals are treated as disabled."""
        return max(v, 0)

    @field_validator("max_images_to_fetch")
    @classmethod
    def validate_max_images(cls, v: int) -> int:
        """Validate the per-run image limit."""
        if v < 1 or v > 1000:
            raise ValueError("max_images_to_fetch must be between 1 and 1000")
        return v

    @field_validator("api_base_url", mode="before")
    @classmethod
    def validate_url(cls, v: str) -> str:
        """Validate API URL format."""
        if not str(v).startswith(("http://", "https://")):
            raise ValueError("Gyazo API URL must start with http:// or https://")
        return str(v).rstrip("/")

    def get_access_token(self) -> str | None:
        """
        Get the Gyazo access token from keyring or config.

        Priority:
        1. System keyring
        2. Config/environment variable (fallback)

        Returns:
            Access token if found, None otherwise
        """
        try:
            from gyazobridge.utils.credentials import CredentialStore

            token = CredentialStore().get_access_token()
            if token:
                logger.debug("Using Gyazo access token from system keyring")
                return token
        except Exception as e:
            logger.warning(f"Failed to retrieve access token from keyring: {e}")

        if self.access_token:
            logger.debug("Using Gyazo access token from config/environment")
            return self.access_token

        return None

    def model_dump(self, **kwargs) -> dict:
        """Override to convert Path to string for serialization."""
        data = super().model_dump(**kwargs)
        if "vault_path" in data and isinstance(data["vault_path"], Path):
            data["vault_path"] = str(data["vault_path"])
        return data


class GeneralConfig(BaseSettings):
    """General application configuration."""

    log_level: str = "INFO"
    data_dir: Path = Field(
        default_factory=lambda: Path.home() / ".gyazobridge"
    )
    log_file_name: str = "gyazobridge.log"
    log_file_max_bytes: int = 5 * 1024 * 1024
    log_file_backup_count: int = 3
    # Per-category level overrides, e.g. {"http": "WARNING"}
    log_overrides: dict[str, str] = Field(default_factory=dict)
    # Runtime metadata - not serialized to config file
    config_file: Path | None = Field(default=None, exclude=True)

    @field_validator("log_level", mode="before")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate log level."""
        valid_levels = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        v = v.upper()
        if v not in valid_levels:
            raise ValueError(f"Log level must be one of: {', '.join(valid_levels)}")
        return v

    @field_validator("data_dir", mode="before")
    @classmethod
    def expand_data_dir(cls, v: str | Path) -> Path:
        """Expand user home directory in data directory path."""
        return Path(v).expanduser().resolve()


class AppConfig(BaseSettings):
    """Main application configuration."""

    model_config = SettingsConfigDict(
        env_prefix="GYAZOBRIDGE_",
        env_nested_delimiter="__",
        case_sensitive=False,
    )

    general: GeneralConfig = Field(default_factory=GeneralConfig)
    gyazo: GyazoConfig = Field(default_factory=GyazoConfig)

    @classmethod
    def load_from_file(cls, config_path: Path) -> "AppConfig":
        """Load configuration from a TOML file."""
        if not config_path.exists():
            logger.warning(f"Config file not found: {config_path}, using defaults")
            return cls()

        import tomllib

        with open(config_path, "rb") as f:
            config_dict = tomllib.load(f)

        return cls(**config_dict)

    def save_to_file(self, config_path: Path) -> None:
        """Save configuration to a TOML file."""
        import tomli_w

        config_path.parent.mkdir(parents=True, exist_ok=True)

        # Convert to dict, handling Path objects and excluding None values
        config_dict = self.model_dump(mode="json", exclude_none=True)

        with open(config_path, "wb") as f:
            tomli_w.dump(config_dict, f)

        logger.info(f"Configuration saved to {config_path}")

    def ensure_data_dir(self) -> None:
        """Ensure data directory exists."""
        self.general.data_dir.mkdir(parents=True, exist_ok=True)
        logger.debug(f"Data directory: {self.general.data_dir}")

    @property
    def state_db_path(self) -> Path:
        """Path to the sync state database (checkpoint, note index, run log)."""
        return self.general.data_dir / "gyazo.db"

    @property
    def default_config_path(self) -> Path:
        """Get default configuration file path."""
        return self.general.data_dir / "config.toml"


def load_config(config_path: Path | None = None) -> AppConfig:
    """Load configuration from file or create default."""
    if config_path is None:
        config = AppConfig()
        config_path = config.default_config_path

    if config_path.exists():
        config = AppConfig.load_from_file(config_path)
    else:
        config = AppConfig()

    config.general.config_file = config_path
    config.ensure_data_dir()
    return config
