"""
Pydantic configuration models with validation.

Configuration Architecture:
==========================

DatabaseConfig: PostgreSQL connection settings, parsed from a
    ``user:password@host:port/database`` connection descriptor
LoadingConfig: Worker count, batch size, merge policy and the table/column
    names the load job addresses
AppConfig: Top-level application configuration (database + loading)
"""

import re
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field, field_validator

from ...core.exceptions import ConfigurationError


CONNECTION_RE = re.compile(
    r"([a-zA-Z0-9]+):([a-zA-Z0-9]+)@([a-zA-Z0-9-.:,]+):([0-9]+)/([a-zA-Z0-9]+)"
)
IDENTIFIER_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


class Environment(str, Enum):
    """Application environment enumeration."""
    DEVELOPMENT = "development"
    PRODUCTION = "production"
    TESTING = "testing"


class MergePolicy(str, Enum):
    """What the job does with staging when some workers failed."""
    ON_SUCCESS = "on_success"  # merge only when every worker succeeded
    ALWAYS = "always"  # merge whatever was staged


class DatabaseConfig(BaseModel):
    """Database connection configuration with validation."""

    host: str = Field(default="localhost", description="Database host")
    port: int = Field(default=5432, ge=1, le=65535, description="Database port")
    user: str = Field(default="postgres", description="Database username")
    password: str = Field(default="postgres", description="Database password")
    database_name: str = Field(default="bss", description="Database name")
    driver: str = Field(default="postgresql", description="SQLAlchemy dialect+driver")

    @field_validator('host')
    @classmethod
    def validate_host(cls, v):
        if not v.strip():
            raise ValueError('Host cannot be empty')
        return v.strip()

    @classmethod
    def from_descriptor(cls, descriptor: str) -> "DatabaseConfig":
        """
        Parse a ``user:password@host:port/database`` connection descriptor.

        Raises:
            ConfigurationError: If the descriptor does not match in full.
        """
        match = CONNECTION_RE.fullmatch((descriptor or "").strip())
        if match is None:
            raise ConfigurationError(
                "Invalid connection string, expected user:password@host:port/database"
            )
        user, password, host, port, database_name = match.groups()
        try:
            return cls(
                user=user,
                password=password,
                host=host,
                port=int(port),
                database_name=database_name,
            )
        except ValueError as e:
            raise ConfigurationError(f"Invalid connection string: {e}") from e

    def get_connection_string(self, db_name: Optional[str] = None) -> str:
        """Get SQLAlchemy connection string."""
        target_db = db_name or self.database_name
        return f"{self.driver}://{self.user}:{self.password}@{self.host}:{self.port}/{target_db}"

    def __repr__(self):
        return (
            f"DatabaseConfig(host={self.host}, port={self.port}, user={self.user}, "
            f"password=***, database={self.database_name})"
        )


class LoadingConfig(BaseModel):
    """Database loading configuration."""

    workers: int = Field(
        default=1,
        ge=1,
        le=256,
        description="Number of parallel worker processes (clamped to the record count)"
    )
    batch_size: int = Field(
        default=1000,
        ge=1,
        le=32000,
        description="Records per multi-row INSERT into staging"
    )
    merge_policy: MergePolicy = Field(
        default=MergePolicy.ON_SUCCESS,
        description="Whether merge runs when some workers failed"
    )
    target_table: str = Field(default="subscriber_billings", description="Permanent table")
    staging_table: str = Field(default="subscriber_billings_temp", description="Ephemeral staging table")
    key_column: str = Field(default="msisdn", description="Unique identifier column")
    flag_column: str = Field(default="prepaid", description="Prepaid flag column")
    show_progress: bool = Field(default=True, description="Render per-worker progress bars")

    @field_validator('target_table', 'staging_table', 'key_column', 'flag_column')
    @classmethod
    def validate_identifier(cls, v):
        if not IDENTIFIER_RE.match(v):
            raise ValueError(f'Invalid SQL identifier: {v!r}')
        return v

    @field_validator('staging_table')
    @classmethod
    def validate_staging_differs(cls, v, info):
        if info.data.get('target_table') == v:
            raise ValueError('Staging table must differ from the target table')
        return v

    @field_validator('flag_column')
    @classmethod
    def validate_columns_differ(cls, v, info):
        if info.data.get('key_column') == v:
            raise ValueError('Key and flag columns must differ')
        return v


class AppConfig(BaseModel):
    """Top-level application configuration."""

    environment: Environment = Field(default=Environment.DEVELOPMENT)
    database: Optional[DatabaseConfig] = Field(default=None)
    loading: LoadingConfig = Field(default_factory=LoadingConfig)

    def get_database_url(self) -> str:
        if self.database is None:
            raise ConfigurationError("No database connection configured")
        return self.database.get_connection_string()
