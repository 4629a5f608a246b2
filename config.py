"""
Configuration module for the Surgical Mart POS backend.
Loads settings from environment variables (and an optional .env file).
"""

from typing import List

from pydantic_settings import BaseSettings
from pydantic import Field


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Application Configuration
    app_host: str = Field(
        default="0.0.0.0",
        alias="APP_HOST",
        description="Host to bind the application"
    )
    app_port: int = Field(
        default=8000,
        alias="APP_PORT",
        description="Port to bind the application"
    )
    cors_origins: str = Field(
        default="*",
        alias="CORS_ORIGINS",
        description="Comma-separated origins allowed to call the API"
    )

    @property
    def cors_origin_list(self) -> List[str]:
        return [origin.strip() for origin in self.cors_origins.split(",") if origin.strip()]

    # Logging
    log_level: str = Field(
        default="INFO",
        alias="LOG_LEVEL",
        description="Logging level"
    )

    # Data Store Configuration
    data_backend: str = Field(
        default="cosmos",
        alias="DATA_BACKEND",
        description="Document store backend: 'cosmos' or 'memory'"
    )
    cosmos_endpoint: str = Field(
        default="https://localhost:8081/",
        alias="COSMOS_ENDPOINT",
        description="Azure Cosmos DB account endpoint"
    )
    cosmos_database: str = Field(
        default="surgical_mart",
        alias="COSMOS_DATABASE",
        description="Cosmos DB database name"
    )
    cosmos_key: str = Field(
        default="",
        alias="COSMOS_KEY",
        description="Cosmos DB account key (DefaultAzureCredential is used when empty)"
    )

    # Returns Configuration
    returns_auto_approve: bool = Field(
        default=False,
        alias="RETURNS_AUTO_APPROVE",
        description="Complete returns immediately instead of leaving them pending"
    )
    returns_default_refund_method: str = Field(
        default="cash",
        alias="RETURNS_DEFAULT_REFUND_METHOD",
        description="Refund method used when a request does not name one"
    )
    return_reservation_retries: int = Field(
        default=5,
        alias="RETURN_RESERVATION_RETRIES",
        description="Attempts at reserving return quantities before giving up on a conflicting sale update"
    )
    workflow_ttl_minutes: int = Field(
        default=60,
        alias="WORKFLOW_TTL_MINUTES",
        description="Idle minutes before a return workflow is discarded"
    )

    # Branding Configuration
    brand_name: str = Field(
        default="Health Care Surgical Mart",
        alias="BRAND_NAME",
        description="Shop name reported by the health endpoint"
    )

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        extra = "ignore"


# Global settings instance
settings = Settings()
