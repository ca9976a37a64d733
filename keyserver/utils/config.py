"""Configuration utilities for the keyserver service."""

import json
import logging
import os
from functools import lru_cache
from typing import Any, Dict, List, Optional, Tuple, Type

import boto3
from botocore.exceptions import ClientError
from pydantic import Field, SecretStr, field_validator
from pydantic_settings import (
    BaseSettings,
    JsonConfigSettingsSource,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
)

from keyserver.models.fleet import FleetConfig

logger = logging.getLogger(__name__)

CONFIG_FILE_ENV = "KEYSERVER_CONFIG_FILE"
DEFAULT_CONFIG_FILE = "config.json"

LOG_OUTPUTS = {"stdout", "file", "both"}


class AwsSecretsManager:
    """Utility class for retrieving secrets from AWS Secrets Manager."""

    def __init__(self, region_name: Optional[str] = None):
        """
        Initialize AWS Secrets Manager client.

        Args:
            region_name: AWS region name
        """
        self.region_name = region_name or os.environ.get("AWS_REGION", "us-east-1")
        # Use default credentials from environment or instance profile
        self.client = boto3.client(
            service_name="secretsmanager",
            region_name=self.region_name,
            endpoint_url=os.environ.get("AWS_SECRETSMANAGER_ENDPOINT"),
        )

    def get_secret(self, secret_name: str) -> Dict[str, Any]:
        """
        Retrieve a secret from AWS Secrets Manager.

        Args:
            secret_name: Name or ARN of the secret

        Returns:
            Dict[str, Any]: Secret values as a dictionary

        Raises:
            ClientError: If the secret cannot be retrieved
        """
        try:
            response = self.client.get_secret_value(SecretId=secret_name)
            if "SecretString" in response:
                return json.loads(response["SecretString"])
            else:
                raise ValueError("Binary secrets are not supported")
        except ClientError as e:
            if os.environ.get("KEYSERVER_SERVICE_ENV", "development") == "development":
                logger.warning("Could not retrieve secret %s: %s", secret_name, e)
                return {}
            raise


class Settings(BaseSettings):
    """
    Service settings.

    Sources, highest priority first: constructor arguments, KEYSERVER_*
    environment variables, .env, then the JSON config file named by
    KEYSERVER_CONFIG_FILE (default config.json). The fleet fields use the
    config file's JSON keys: user, key, interval, keychain, ntp, devices.
    """

    # Service configuration
    service_env: str = Field("development", description="Service environment (development, staging, production)")
    log_level: str = Field("INFO", description="Logging level")
    log_output: str = Field("both", description="Log destination: stdout, file or both")
    log_file_path: Optional[str] = Field("keyserver.log", description="Log file used when log_output is file or both")
    secret_name: Optional[str] = Field(None, description="AWS Secrets Manager secret holding device credentials")
    aws_region: str = Field("us-east-1", description="AWS region")

    # Metrics endpoint
    metrics_port: int = Field(8799, description="Port serving /health, /status and /metrics")
    metrics_user: Optional[str] = Field(None, description="Basic auth user for /metrics")
    metrics_pass: Optional[SecretStr] = Field(None, description="Basic auth password for /metrics")

    # Rotation loop
    rotation_enabled: bool = Field(True, description="Start the rotation loop with the service")
    cycle_period_seconds: int = Field(24 * 60 * 60, gt=0, description="Pause between rotation cycles")

    # Fleet
    user: Optional[str] = Field(None, description="Device login")
    key: Optional[str] = Field(None, description="Path to the SSH private key for device logins")
    password: Optional[SecretStr] = Field(None, description="Device password or private key passphrase")
    port: int = Field(22, description="NETCONF-over-SSH port")
    interval: int = Field(24, gt=0, description="Hours between consecutive key activations")
    keychain: Optional[str] = Field(None, description="Key-chain name to rotate")
    ntp: bool = Field(False, description="Require NTP time source on every device")
    devices: List[str] = Field(default_factory=list, description="Ordered device addresses")

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        level = v.upper()
        if not isinstance(logging.getLevelName(level), int):
            raise ValueError(f"unknown log level {v!r}")
        return level

    @field_validator("log_output")
    @classmethod
    def validate_log_output(cls, v: str) -> str:
        if v not in LOG_OUTPUTS:
            raise ValueError(f"log_output must be one of {sorted(LOG_OUTPUTS)}")
        return v

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        env_prefix="KEYSERVER_",
        extra="ignore"
    )

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: Type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> Tuple[PydanticBaseSettingsSource, ...]:
        config_file = os.environ.get(CONFIG_FILE_ENV, DEFAULT_CONFIG_FILE)
        return (
            init_settings,
            env_settings,
            dotenv_settings,
            JsonConfigSettingsSource(settings_cls, json_file=config_file),
            file_secret_settings,
        )

    def _load_secrets(self) -> None:
        """Load device credentials from AWS Secrets Manager if configured."""
        if not self.secret_name or self.service_env == "development":
            return

        secrets_manager = AwsSecretsManager(self.aws_region)
        secrets = secrets_manager.get_secret(self.secret_name)

        for key, value in secrets.items():
            key_lower = key.lower()
            if hasattr(self, key_lower):
                field_info = self.__class__.model_fields.get(key_lower)
                if field_info and field_info.annotation == Optional[SecretStr] and isinstance(value, str):
                    value = SecretStr(value)
                setattr(self, key_lower, value)

    def __init__(self, *args, **kwargs):
        """Initialize settings with secrets."""
        super().__init__(*args, **kwargs)
        self._load_secrets()

    def fleet_config(self) -> FleetConfig:
        """
        Build the immutable fleet configuration.

        Raises:
            ValueError: If the fleet is not fully configured
        """
        if not self.devices:
            raise ValueError("no devices configured")
        if not self.user or not self.keychain:
            raise ValueError("user and keychain are required")
        return FleetConfig(
            user=self.user,
            private_key_file=self.key,
            password=self.password,
            port=self.port,
            interval_hours=self.interval,
            keychain=self.keychain,
            ntp_required=self.ntp,
            devices=self.devices,
        )


@lru_cache()
def get_settings() -> Settings:
    """
    Create and cache settings instance.

    Returns:
        Settings: Service settings
    """
    return Settings()
