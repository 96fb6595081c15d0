"""Configuration management for the bulk migration tool."""

from typing import Optional, Dict, Any
from pathlib import Path
import os

from pydantic import BaseModel, ConfigDict, Field, field_validator
import yaml
from dotenv import load_dotenv


def _validate_http_url(v: Optional[str]) -> Optional[str]:
    if v is None:
        return v
    if not v.startswith(('http://', 'https://')):
        raise ValueError('URL must start with http:// or https://')
    return v.rstrip('/')


class TargetConfig(BaseModel):
    """Configuration for the target GitHub instance."""

    api_url: str = Field(
        default='https://api.github.com', description='GitHub API URL'
    )
    token: Optional[str] = Field(
        default=None, description='Personal access token for the target org'
    )
    timeout: int = Field(default=30, description='Request timeout in seconds')

    @field_validator('api_url')
    @classmethod
    def validate_api_url(cls, v):
        """Validate API URL format."""
        return _validate_http_url(v)

    @field_validator('timeout')
    @classmethod
    def validate_timeout(cls, v):
        """Validate timeout is positive."""
        if v <= 0:
            raise ValueError('Timeout must be positive')
        return v


class AdoConfig(BaseModel):
    """Azure DevOps source configuration."""

    server_url: str = Field(
        default='https://dev.azure.com', description='Azure DevOps base URL'
    )
    pat: Optional[str] = Field(default=None, description='Personal access token')
    timeout: int = Field(default=30, description='Request timeout in seconds')

    @field_validator('server_url')
    @classmethod
    def validate_server_url(cls, v):
        """Validate server URL format."""
        return _validate_http_url(v)


class GhesConfig(BaseModel):
    """GitHub source configuration (GitHub.com or GitHub Enterprise Server)."""

    api_url: Optional[str] = Field(
        default=None, description='GHES API URL, e.g. https://ghes.example.com/api/v3'
    )
    token: Optional[str] = Field(
        default=None, description='Personal access token for the source org'
    )
    verify_ssl: bool = Field(default=True, description='Verify GHES TLS certificate')

    @field_validator('api_url')
    @classmethod
    def validate_api_url(cls, v):
        """Validate API URL format."""
        return _validate_http_url(v)


class StorageConfig(BaseModel):
    """Blob storage used to hand GHES archives to the target platform."""

    azure_sas_url: Optional[str] = Field(
        default=None, description='Azure Blob container URL including a SAS token'
    )
    keep_archive: bool = Field(
        default=False, description='Keep downloaded archives on local disk'
    )


class MigrationConfig(BaseModel):
    """Migration polling and behaviour settings."""

    wait_interval_seconds: float = Field(
        default=10.0, description='Seconds between migration status polls'
    )
    archive_poll_interval_seconds: float = Field(
        default=10.0, description='Seconds between archive status polls'
    )
    archive_timeout_hours: float = Field(
        default=20.0, description='Overall archive generation deadline'
    )
    target_repo_visibility: str = Field(
        default='private', description='Visibility of migrated repositories'
    )
    skip_releases: bool = Field(
        default=False, description='Skip releases when generating archives'
    )

    @field_validator(
        'wait_interval_seconds', 'archive_poll_interval_seconds', 'archive_timeout_hours'
    )
    @classmethod
    def validate_non_negative(cls, v):
        """Validate intervals and timeouts are not negative."""
        if v < 0:
            raise ValueError('Intervals and timeouts must not be negative')
        return v

    @field_validator('target_repo_visibility')
    @classmethod
    def validate_visibility(cls, v):
        """Validate repository visibility."""
        valid = ['private', 'internal', 'public']
        if v.lower() not in valid:
            raise ValueError(f'Visibility must be one of: {valid}')
        return v.lower()


class LoggingConfig(BaseModel):
    """Logging configuration."""

    level: str = Field(default='INFO', description='Log level')
    file: Optional[str] = Field(default=None, description='Log file path')
    format: Optional[str] = Field(default=None, description='Console log format')

    @field_validator('level')
    @classmethod
    def validate_log_level(cls, v):
        """Validate log level."""
        valid_levels = ['DEBUG', 'INFO', 'SUCCESS', 'WARNING', 'ERROR', 'CRITICAL']
        if v.upper() not in valid_levels:
            raise ValueError(f'Log level must be one of: {valid_levels}')
        return v.upper()


class Config(BaseModel):
    """Main configuration class for the bulk migration tool."""

    model_config = ConfigDict(extra='forbid')

    target: TargetConfig = Field(
        default_factory=TargetConfig, description='Target GitHub instance'
    )
    ado: AdoConfig = Field(default_factory=AdoConfig, description='Azure DevOps source')
    github_source: GhesConfig = Field(
        default_factory=GhesConfig, description='GitHub / GHES source'
    )
    storage: StorageConfig = Field(
        default_factory=StorageConfig, description='Archive blob storage'
    )
    migration: MigrationConfig = Field(
        default_factory=MigrationConfig, description='Migration settings'
    )
    logging: LoggingConfig = Field(
        default_factory=LoggingConfig, description='Logging settings'
    )

    @classmethod
    def from_file(cls, config_path: str) -> 'Config':
        """Load configuration from YAML file.

        Tokens left out of the file are filled in from the environment.
        """
        config_file = Path(config_path)

        if not config_file.exists():
            raise FileNotFoundError(f'Configuration file not found: {config_path}')

        with open(config_file, 'r', encoding='utf-8') as f:
            config_data = yaml.safe_load(f) or {}

        config = cls(**config_data)
        config.apply_env_tokens()
        return config

    @classmethod
    def from_env(cls) -> 'Config':
        """Load configuration from environment variables."""
        load_dotenv()

        config_data = {
            'target': {
                'api_url': os.getenv('TARGET_API_URL'),
                'token': os.getenv('GH_PAT'),
            },
            'ado': {
                'server_url': os.getenv('ADO_SERVER_URL'),
                'pat': os.getenv('ADO_PAT'),
            },
            'github_source': {
                'api_url': os.getenv('GHES_API_URL'),
                'token': os.getenv('GH_SOURCE_PAT'),
            },
            'storage': {
                'azure_sas_url': os.getenv('AZURE_STORAGE_SAS_URL'),
            },
            'migration': {
                'wait_interval_seconds': os.getenv('WAIT_INTERVAL_SECONDS'),
            },
            'logging': {
                'level': os.getenv('LOG_LEVEL', 'INFO'),
                'file': os.getenv('LOG_FILE'),
            },
        }

        config_data = cls._remove_none_values(config_data)

        config = cls(**config_data)
        config.apply_env_tokens()
        return config

    def apply_env_tokens(self) -> None:
        """Fill missing credentials from the environment."""
        load_dotenv()

        if not self.target.token:
            self.target.token = os.getenv('GH_PAT')
        if not self.ado.pat:
            self.ado.pat = os.getenv('ADO_PAT')
        if not self.github_source.token:
            # GitHub-to-GitHub migrations fall back to the target token
            self.github_source.token = os.getenv('GH_SOURCE_PAT') or self.target.token
        if not self.storage.azure_sas_url:
            self.storage.azure_sas_url = os.getenv('AZURE_STORAGE_SAS_URL')

    @staticmethod
    def _remove_none_values(data: Dict[str, Any]) -> Dict[str, Any]:
        """Recursively remove None values from dictionary."""
        if isinstance(data, dict):
            return {
                k: Config._remove_none_values(v)
                for k, v in data.items()
                if v is not None
            }
        return data

    def to_file(self, config_path: str) -> None:
        """Save configuration to YAML file."""
        config_file = Path(config_path)
        config_file.parent.mkdir(parents=True, exist_ok=True)

        with open(config_file, 'w', encoding='utf-8') as f:
            yaml.dump(
                self.model_dump(), f, default_flow_style=False, indent=2, sort_keys=False
            )

    @staticmethod
    def create_template(output_path: str) -> None:
        """Create a configuration template file."""
        template_config = {
            'target': {
                'api_url': 'https://api.github.com',
                'token': 'your-target-personal-access-token',
                'timeout': 30,
            },
            'ado': {
                'server_url': 'https://dev.azure.com',
                'pat': 'your-azure-devops-personal-access-token',
            },
            'github_source': {
                'api_url': None,
                'token': 'your-source-personal-access-token',
                'verify_ssl': True,
            },
            'storage': {
                'azure_sas_url': None,
                'keep_archive': False,
            },
            'migration': {
                'wait_interval_seconds': 10,
                'archive_poll_interval_seconds': 10,
                'archive_timeout_hours': 20,
                'target_repo_visibility': 'private',
                'skip_releases': False,
            },
            'logging': {
                'level': 'INFO',
                'file': 'migration.log',
            },
        }

        config_file = Path(output_path)
        config_file.parent.mkdir(parents=True, exist_ok=True)

        with open(config_file, 'w', encoding='utf-8') as f:
            yaml.dump(
                template_config, f, default_flow_style=False, indent=2, sort_keys=False
            )
