from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import field_validator, model_validator
from typing import Literal, Optional

class Settings(BaseSettings):
    """
    Application-wide settings managed by Pydantic.
    Reads configuration from environment variables and .env files.
    """
    # General project metadata
    PROJECT_NAME: str = "ToolHive Registry Manager"
    API_V1_STR: str = "/api/v1"

    # Deployment context. Sample data is only ever served outside production.
    ENVIRONMENT: Literal["production", "development", "test"] = "production"
    LOG_LEVEL: str = "INFO"

    # Cluster Configuration
    # Namespace used when a request does not name one
    DEFAULT_NAMESPACE: str = "toolhive-system"
    # Custom resource coordinates for MCPRegistry / MCPServer
    CRD_GROUP: str = "toolhive.stacklok.dev"
    CRD_VERSION: str = "v1alpha1"
    # "kubernetes" talks to a real API server, "memory" keeps everything in-process
    CLUSTER_STORE: Literal["kubernetes", "memory"] = "kubernetes"
    # Optional explicit kubeconfig path; in-cluster config and ~/.kube/config are tried otherwise
    KUBECONFIG: Optional[str] = None
    KUBE_REQUEST_TIMEOUT_SECONDS: float = 10.0

    # Registry API fetching
    FETCH_TIMEOUT_SECONDS: float = 15.0
    REGISTRY_API_PREFIX: str = "/v0"
    DEFAULT_SERVICE_PORT: str = "8080"

    # Sync scheduling
    SYNC_SCHEDULER_ENABLED: bool = True
    SYNC_SCHEDULER_PERIOD_SECONDS: float = 30.0
    SYNC_HISTORY_LIMIT: int = 10

    # Built-in sample listing, substituted on fetch failure (development/test only)
    ENABLE_SAMPLE_DATA: bool = False

    # Database Configuration
    # Holds the sync history ledger only; registries live in the cluster
    DATABASE_URL: str = "sqlite+aiosqlite:///./local.db"

    @field_validator("DATABASE_URL")
    @classmethod
    def fix_postgres_url(cls, v: str) -> str:
        """
        Convert a postgres:// URL to postgresql+psycopg:// for SQLAlchemy async.
        """
        if v.startswith("postgres://"):
            return v.replace("postgres://", "postgresql+psycopg://", 1)
        return v

    # Enrichment
    # Redis is optional; enrichment proceeds uncached when it is unreachable
    REDIS_URL: str = "redis://localhost:6379/0"
    GITHUB_TOKEN: Optional[str] = None
    ENRICH_GITHUB_STARS: bool = False

    @field_validator("KUBE_REQUEST_TIMEOUT_SECONDS", "FETCH_TIMEOUT_SECONDS", "SYNC_SCHEDULER_PERIOD_SECONDS")
    @classmethod
    def require_positive(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("timeouts and periods must be positive")
        return v

    @model_validator(mode='after')
    def validate_sample_data(self) -> 'Settings':
        """
        Refuse to enable the sample listing in production.
        """
        if self.ENABLE_SAMPLE_DATA and self.ENVIRONMENT == "production":
            raise ValueError(
                "ENABLE_SAMPLE_DATA may only be set when ENVIRONMENT is 'development' or 'test'."
            )
        return self

    # Pydantic Configuration
    model_config = SettingsConfigDict(
        env_file=".env",              # Load variables from .env file
        env_file_encoding="utf-8",    # Ensure correct encoding
        case_sensitive=True,          # Environment variables are case-sensitive
        extra="ignore"                # Ignore extra fields in .env not defined here
    )

# Instantiate the settings object to be imported elsewhere
settings = Settings()
