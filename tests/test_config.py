"""Tests for configuration management."""

import os
import tempfile
from unittest.mock import patch

import pytest
import yaml
from pydantic import ValidationError

from bulk_migrate.config.config import (
    Config,
    MigrationConfig,
    TargetConfig,
    LoggingConfig,
)


class TestTargetConfig:
    """Test target configuration."""

    def test_defaults(self):
        """Test default target configuration."""
        config = TargetConfig()

        assert config.api_url == 'https://api.github.com'
        assert config.token is None
        assert config.timeout == 30

    def test_url_validation(self):
        """Test URL validation and normalization."""
        config = TargetConfig(api_url='https://ghe.example.com/api/v3/')
        assert config.api_url == 'https://ghe.example.com/api/v3'

        with pytest.raises(ValidationError):
            TargetConfig(api_url='ghe.example.com')

    def test_timeout_must_be_positive(self):
        """Test timeout validation."""
        with pytest.raises(ValidationError):
            TargetConfig(timeout=0)


class TestMigrationConfig:
    """Test migration settings."""

    def test_defaults(self):
        """Test polling defaults."""
        config = MigrationConfig()

        assert config.wait_interval_seconds == 10.0
        assert config.archive_poll_interval_seconds == 10.0
        assert config.archive_timeout_hours == 20.0
        assert config.target_repo_visibility == 'private'

    def test_negative_interval_rejected(self):
        """Test negative intervals are rejected."""
        with pytest.raises(ValidationError):
            MigrationConfig(wait_interval_seconds=-1)

    def test_visibility_validation(self):
        """Test visibility is normalized and validated."""
        assert MigrationConfig(target_repo_visibility='Internal').target_repo_visibility == (
            'internal'
        )
        with pytest.raises(ValidationError):
            MigrationConfig(target_repo_visibility='secret')


class TestLoggingConfig:
    """Test logging configuration."""

    def test_level_normalized(self):
        """Test log level is upper-cased."""
        assert LoggingConfig(level='debug').level == 'DEBUG'

    def test_invalid_level(self):
        """Test invalid log level."""
        with pytest.raises(ValidationError):
            LoggingConfig(level='verbose')


class TestConfig:
    """Test main configuration class."""

    def test_config_creation(self):
        """Test configuration with nested sections."""
        config = Config(
            target={'token': 'gh-token'},
            ado={'pat': 'ado-pat'},
            migration={'wait_interval_seconds': 0},
        )

        assert config.target.token == 'gh-token'
        assert config.ado.pat == 'ado-pat'
        assert config.migration.wait_interval_seconds == 0

    def test_unknown_section_rejected(self):
        """Test extra top-level keys are rejected."""
        with pytest.raises(ValidationError):
            Config(source={'url': 'https://example.com'})

    def test_config_from_file(self):
        """Test configuration loading from YAML file."""
        config_content = """
target:
  api_url: https://api.github.com
  token: target-token

ado:
  server_url: https://ado.example.com/
  pat: ado-pat

migration:
  wait_interval_seconds: 5
  skip_releases: true
"""

        with tempfile.NamedTemporaryFile(mode='w', suffix='.yaml', delete=False) as f:
            f.write(config_content)
            f.flush()

            try:
                with patch.dict(os.environ, {}, clear=True):
                    config = Config.from_file(f.name)
                assert config.target.token == 'target-token'
                assert config.ado.server_url == 'https://ado.example.com'
                assert config.ado.pat == 'ado-pat'
                assert config.migration.wait_interval_seconds == 5
                assert config.migration.skip_releases is True
            finally:
                os.unlink(f.name)

    def test_config_from_file_fills_tokens_from_env(self):
        """Test tokens missing from the file come from the environment."""
        with tempfile.NamedTemporaryFile(mode='w', suffix='.yaml', delete=False) as f:
            f.write('target:\n  api_url: https://api.github.com\n')
            f.flush()

            try:
                env = {'GH_PAT': 'env-gh', 'ADO_PAT': 'env-ado'}
                with patch.dict(os.environ, env, clear=True):
                    config = Config.from_file(f.name)

                assert config.target.token == 'env-gh'
                assert config.ado.pat == 'env-ado'
                # GitHub sources fall back to the target token
                assert config.github_source.token == 'env-gh'
            finally:
                os.unlink(f.name)

    def test_config_from_env(self):
        """Test configuration loading from environment variables."""
        env_vars = {
            'GH_PAT': 'gh-token',
            'ADO_PAT': 'ado-token',
            'GH_SOURCE_PAT': 'source-token',
            'GHES_API_URL': 'https://ghes.example.com/api/v3',
            'AZURE_STORAGE_SAS_URL': 'https://acct.blob.core.windows.net/c?sig=x',
            'WAIT_INTERVAL_SECONDS': '2.5',
            'LOG_LEVEL': 'debug',
        }

        with patch.dict(os.environ, env_vars, clear=True):
            config = Config.from_env()

        assert config.target.token == 'gh-token'
        assert config.ado.pat == 'ado-token'
        assert config.github_source.token == 'source-token'
        assert config.github_source.api_url == 'https://ghes.example.com/api/v3'
        assert config.storage.azure_sas_url.startswith('https://acct.blob')
        assert config.migration.wait_interval_seconds == 2.5
        assert config.logging.level == 'DEBUG'

    def test_config_from_env_defaults(self):
        """Test defaults when the environment is empty."""
        with patch.dict(os.environ, {}, clear=True):
            config = Config.from_env()

        assert config.target.api_url == 'https://api.github.com'
        assert config.target.token is None
        assert config.logging.level == 'INFO'

    def test_config_from_env_source_token_falls_back(self):
        """Test the GitHub source token defaults to GH_PAT."""
        with patch.dict(os.environ, {'GH_PAT': 'gh-token'}, clear=True):
            config = Config.from_env()

        assert config.target.token == 'gh-token'
        assert config.github_source.token == 'gh-token'

    def test_invalid_config_file(self):
        """Test handling of invalid configuration file."""
        with tempfile.NamedTemporaryFile(mode='w', suffix='.yaml', delete=False) as f:
            f.write('invalid: yaml: content:')
            f.flush()

            try:
                with pytest.raises(Exception):
                    Config.from_file(f.name)
            finally:
                os.unlink(f.name)

    def test_missing_config_file(self):
        """Test handling of missing configuration file."""
        with pytest.raises(FileNotFoundError):
            Config.from_file('/nonexistent/config.yaml')

    def test_create_template(self):
        """Test the template is valid configuration."""
        with tempfile.TemporaryDirectory() as temp_dir:
            path = os.path.join(temp_dir, 'config.yaml')
            Config.create_template(path)

            with open(path, 'r', encoding='utf-8') as f:
                data = yaml.safe_load(f)

            config = Config(**data)
            assert config.migration.archive_timeout_hours == 20
            assert config.logging.file == 'migration.log'

    def test_to_file_round_trip(self):
        """Test saving and loading configuration."""
        with tempfile.TemporaryDirectory() as temp_dir:
            path = os.path.join(temp_dir, 'saved.yaml')
            Config(target={'token': 't'}, ado={'pat': 'p'}).to_file(path)

            with patch.dict(os.environ, {}, clear=True):
                loaded = Config.from_file(path)

            assert loaded.target.token == 't'
            assert loaded.ado.pat == 'p'
