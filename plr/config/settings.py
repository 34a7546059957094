"""
Configuration management for plr

This module handles loading and access of application settings from YAML
files and environment variables. Settings are grouped into dataclass
sections:
- Storage (where tracked playlists live)
- Sync behaviour (default provider, write-access checks)
- Spotify and YouTube Music provider settings
- Logging, network and security options

Sensitive values (client secrets) can come from environment variables or a
.env file so they never need to be stored in the YAML configuration.
"""

import os
import yaml
from pathlib import Path
from typing import Dict, Any, Optional
from dataclasses import dataclass, asdict
from dotenv import load_dotenv

from ..exceptions import ConfigError
from ..provider.models import ProviderKind

# Load environment variables from .env file if present
load_dotenv()


@dataclass
class StorageConfig:
    """
    Location of the plr state directory

    Every tracked playlist gets its own directory under
    ``<plr_dir>/playlists/<playlist id>/`` holding current.snapshot,
    history/, staged.patch and journal.log.
    """
    plr_dir: str = ".plr"


@dataclass
class SyncConfig:
    """
    Synchronization behaviour

    default_provider is used when a playlist reference does not reveal its
    provider (a bare id). verify_write_access controls the permission check
    performed before push.
    """
    default_provider: str = "spotify"
    verify_write_access: bool = True


@dataclass
class SpotifyConfig:
    """
    Spotify Web API settings

    Contains credentials and request pacing for the Spotify provider.
    client_id and client_secret should be provided via environment variables.
    """
    client_id: str = ""
    client_secret: str = ""
    token_url: str = "https://accounts.spotify.com/api/token"
    min_request_interval: float = 0.1
    page_size: int = 100
    search_limit: int = 10


@dataclass
class YTMusicConfig:
    """YouTube Music settings (ytmusicapi auth file produced by ``ytmusicapi browser``/``oauth``)"""
    auth_file: str = "ytmusic_auth.json"
    search_limit: int = 10


@dataclass
class LoggingConfig:
    """
    Logging configuration and output settings

    Controls log levels, the optional rotating log file and console
    formatting.
    """
    level: str = "INFO"
    file: str = ""
    max_size: str = "10MB"
    backup_count: int = 3
    console_output: bool = True
    colored_output: bool = True


@dataclass
class NetworkConfig:
    """Timeouts and retry limits for provider HTTP calls"""
    request_timeout: int = 30
    max_retries: int = 3


@dataclass
class SecurityConfig:
    """
    Credential storage

    credentials_directory is resolved relative to the plr directory unless
    absolute. Token files inside it are written with 0600 permissions.
    """
    credentials_directory: str = "credentials"


class Settings:
    """
    Main settings class that manages all configuration

    Loads settings from the first YAML file found, then applies
    environment variable overrides.
    """

    SECTIONS = ('storage', 'sync', 'spotify', 'ytmusic', 'logging', 'network', 'security')

    def __init__(self, config_path: Optional[str] = None):
        """
        Initialize settings from config file and environment variables

        Args:
            config_path: Path to custom config file, if None uses default locations

        Raises:
            ConfigError: If a config file exists but cannot be parsed
        """
        self.config_path = config_path
        self.loaded_from: Optional[Path] = None

        self.storage = StorageConfig()
        self.sync = SyncConfig()
        self.spotify = SpotifyConfig()
        self.ytmusic = YTMusicConfig()
        self.logging = LoggingConfig()
        self.network = NetworkConfig()
        self.security = SecurityConfig()

        # plr_dir from the environment decides where the project config lives
        env_dir = os.getenv('PLR_DIR')
        if env_dir:
            self.storage.plr_dir = env_dir

        self._load_config()
        self._load_environment_variables()

    def _candidate_paths(self):
        return [
            Path(self.config_path) if self.config_path else None,
            Path(self.storage.plr_dir).expanduser() / "config.yaml",
            Path.home() / ".plr" / "config.yaml",
            Path("config.yaml"),
        ]

    def _load_config(self) -> None:
        """
        Load configuration from YAML file

        The first existing file in the search order is used.
        """
        if self.config_path and not Path(self.config_path).exists():
            raise ConfigError(
                f"Config file not found: {self.config_path}",
                details={'file_path': str(self.config_path)}
            )

        for path in self._candidate_paths():
            if path and path.exists():
                try:
                    with open(path, 'r', encoding='utf-8') as f:
                        config_data = yaml.safe_load(f) or {}
                except (OSError, yaml.YAMLError) as e:
                    raise ConfigError(
                        f"Failed to load config from {path}: {e}",
                        details={'file_path': str(path), 'original_error': str(e)}
                    ) from e
                if not isinstance(config_data, dict):
                    raise ConfigError(
                        f"Config file {path} must contain a mapping of sections",
                        details={'file_path': str(path)}
                    )
                self._apply_config(config_data)
                self.loaded_from = path
                break

    def _apply_config(self, config_data: Dict[str, Any]) -> None:
        """
        Apply configuration data to dataclass instances

        Only attributes that exist on the section dataclass are updated;
        unknown sections and keys are ignored.

        Args:
            config_data: Dictionary containing configuration sections
        """
        for section_name, section_data in config_data.items():
            if section_name in self.SECTIONS and isinstance(section_data, dict):
                config_obj = getattr(self, section_name)
                for key, value in section_data.items():
                    if hasattr(config_obj, key):
                        setattr(config_obj, key, value)

    def _load_environment_variables(self) -> None:
        """Environment variables take precedence over file-based configuration"""
        env_mappings = {
            'PLR_DIR': lambda v: setattr(self.storage, 'plr_dir', v),
            'PLR_DEFAULT_PROVIDER': lambda v: setattr(self.sync, 'default_provider', v),
            'PLR_LOG_LEVEL': lambda v: setattr(self.logging, 'level', v),
            'SPOTIFY_CLIENT_ID': lambda v: setattr(self.spotify, 'client_id', v),
            'SPOTIFY_CLIENT_SECRET': lambda v: setattr(self.spotify, 'client_secret', v),
            'YTMUSIC_AUTH_FILE': lambda v: setattr(self.ytmusic, 'auth_file', v),
        }

        for env_var, setter in env_mappings.items():
            value = os.getenv(env_var)
            if value:
                setter(value)

    def get_plr_directory(self) -> Path:
        """Expanded plr state directory"""
        return Path(self.storage.plr_dir).expanduser()

    def get_playlists_directory(self) -> Path:
        """Directory holding one sub-directory per tracked playlist"""
        return self.get_plr_directory() / "playlists"

    def get_credentials_directory(self) -> Path:
        """Directory holding provider token files"""
        path = Path(self.security.credentials_directory).expanduser()
        if path.is_absolute():
            return path
        return self.get_plr_directory() / path

    def get_ytmusic_auth_path(self) -> Path:
        """ytmusicapi auth file, relative paths resolved inside the credentials directory"""
        path = Path(self.ytmusic.auth_file).expanduser()
        if path.is_absolute():
            return path
        return self.get_credentials_directory() / path

    def get_default_provider(self) -> ProviderKind:
        """
        Parsed sync.default_provider

        Raises:
            ConfigError: If the configured name is not a supported provider
        """
        try:
            return ProviderKind.parse(self.sync.default_provider)
        except ValueError as e:
            raise ConfigError(str(e), details={'default_provider': self.sync.default_provider}) from e

    def to_dict(self, include_secrets: bool = False) -> Dict[str, Any]:
        """
        All sections as nested dictionaries

        Args:
            include_secrets: Keep client_secret instead of masking it
        """
        data = {name: asdict(getattr(self, name)) for name in self.SECTIONS}
        if not include_secrets and data['spotify']['client_secret']:
            data['spotify']['client_secret'] = "***"
        return data

    def save_config(self, path: Optional[str] = None) -> Path:
        """
        Save current configuration to file, without secrets

        Args:
            path: Custom path, defaults to ``<plr_dir>/config.yaml``

        Returns:
            Path written

        Raises:
            ConfigError: If the configuration cannot be saved
        """
        target = Path(path) if path else self.get_plr_directory() / "config.yaml"
        config_data = self.to_dict(include_secrets=True)
        config_data['spotify']['client_id'] = ""
        config_data['spotify']['client_secret'] = ""

        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            with open(target, 'w', encoding='utf-8') as f:
                yaml.safe_dump(config_data, f, default_flow_style=False, indent=2, sort_keys=False)
        except OSError as e:
            raise ConfigError(f"Failed to save config to {target}: {e}") from e
        return target

    def __str__(self) -> str:
        sections = [
            f"Dir: {self.storage.plr_dir}",
            f"Default provider: {self.sync.default_provider}",
            f"Log level: {self.logging.level}",
        ]
        return f"Settings({', '.join(sections)})"


# Global settings instance for singleton pattern
_settings: Optional[Settings] = None


def get_settings() -> Settings:
    """
    Get the global settings instance

    Created on first access so importing plr never touches the filesystem.

    Returns:
        The global Settings instance
    """
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings


def reload_settings(config_path: Optional[str] = None) -> Settings:
    """
    Reload settings from configuration files

    Args:
        config_path: Optional path to specific config file

    Returns:
        New Settings instance with reloaded configuration
    """
    global _settings
    _settings = Settings(config_path)
    return _settings


def reset_settings() -> None:
    """Forget the global instance; the next get_settings() reloads from disk"""
    global _settings
    _settings = None
