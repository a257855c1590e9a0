"""
Sales Warehouse Conformance Engine
Centralized Configuration Management

This module provides configuration management using Pydantic settings with
environment variable support, validation, and type safety.
"""

from datetime import date
from functools import lru_cache
from pathlib import Path
from typing import Dict, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class DataLakeSettings(BaseSettings):
    """Layered Storage Configuration"""

    model_config = SettingsConfigDict(env_prefix="DATA_")

    lake_path: str = Field(default="./data", description="Data lake root path")
    raw_path: str = Field(default="./data/raw", description="Raw layer path")
    cleansed_path: str = Field(default="./data/cleansed", description="Cleansed layer path")
    dimensional_path: str = Field(default="./data/dimensional", description="Dimensional layer path")
    persist: bool = Field(default=True, description="Write every layer to parquet")
    compression: str = Field(default="snappy", description="Parquet compression codec")

    def layer_paths(self) -> Dict[str, Path]:
        """Filesystem location of each layer, keyed by layer name"""
        return {
            "raw": Path(self.raw_path),
            "cleansed": Path(self.cleansed_path),
            "dimensional": Path(self.dimensional_path),
        }


class SourceSettings(BaseSettings):
    """Raw Extract Locations"""

    model_config = SettingsConfigDict(env_prefix="SOURCE_")

    source_dir: str = Field(default="./data/sources", description="Directory holding the CRM/ERP extracts")
    crm_customers_file: str = Field(default="crm/customers.csv", description="CRM customer extract")
    crm_products_file: str = Field(default="crm/products.csv", description="CRM product extract")
    crm_sales_file: str = Field(default="crm/sales.csv", description="CRM sales line extract")
    erp_demographics_file: str = Field(default="erp/demographics.csv", description="ERP demographic extract")
    erp_locations_file: str = Field(default="erp/locations.csv", description="ERP location extract")
    erp_categories_file: str = Field(default="erp/categories.csv", description="ERP category extract")

    @property
    def files(self) -> Dict[str, str]:
        """Raw table name -> extract path relative to source_dir"""
        return {
            "crm_customers": self.crm_customers_file,
            "crm_products": self.crm_products_file,
            "crm_sales": self.crm_sales_file,
            "erp_demographics": self.erp_demographics_file,
            "erp_locations": self.erp_locations_file,
            "erp_categories": self.erp_categories_file,
        }


class PipelineSettings(BaseSettings):
    """Pipeline Driver Configuration"""

    model_config = SettingsConfigDict(env_prefix="PIPELINE_")

    max_workers: int = Field(default=1, ge=1, description="Thread pool size for the cleansing stages")
    run_validation: bool = Field(default=True, description="Run the quality suites after the rebuild")


class MonitoringSettings(BaseSettings):
    """Logging Configuration"""

    model_config = SettingsConfigDict(env_prefix="")

    log_level: str = Field(default="INFO", alias="LOG_LEVEL", description="Logging level")
    log_format: str = Field(default="json", description="Log format: json or text")


class DataQualitySettings(BaseSettings):
    """Data Quality Configuration"""

    model_config = SettingsConfigDict(env_prefix="QUALITY_")

    birthdate_floor: date = Field(default=date(1924, 1, 1), description="Earliest plausible birthdate")
    date_key_min: int = Field(default=19000101, description="Lowest plausible YYYYMMDD date key")
    date_key_max: int = Field(default=20500101, description="Highest plausible YYYYMMDD date key")
    amount_tolerance: float = Field(
        default=0.005,
        ge=0,
        description="Largest |amount - quantity * price| still treated as equal",
    )
    max_workers: int = Field(default=1, ge=1, description="Thread pool size for validation checks")
    sample_rows: int = Field(default=10, ge=0, description="Violating rows echoed into the logs")

    @field_validator("date_key_max")
    @classmethod
    def validate_window(cls, v: int, info) -> int:
        """Date key window must not be inverted"""
        low = info.data.get("date_key_min")
        if low is not None and v < low:
            raise ValueError("date_key_max must not be below date_key_min")
        return v


class Settings(BaseSettings):
    """
    Main Application Settings

    Aggregates all configuration sections and provides a single entry point
    for accessing application configuration.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Application
    app_name: str = Field(default="sales-warehouse", alias="APP_NAME", description="Application name")
    app_env: str = Field(default="development", alias="APP_ENV", description="Environment")
    debug: bool = Field(default=False, alias="DEBUG", description="Debug mode")

    # Version
    version: str = Field(default="1.0.0", description="Application version")

    # Subsystem configurations
    data_lake: DataLakeSettings = Field(default_factory=DataLakeSettings)
    sources: SourceSettings = Field(default_factory=SourceSettings)
    pipeline: PipelineSettings = Field(default_factory=PipelineSettings)
    monitoring: MonitoringSettings = Field(default_factory=MonitoringSettings)
    data_quality: DataQualitySettings = Field(default_factory=DataQualitySettings)

    @field_validator("app_env")
    @classmethod
    def validate_env(cls, v: str) -> str:
        """Validate environment value"""
        allowed = ["development", "staging", "production", "testing"]
        if v.lower() not in allowed:
            raise ValueError(f"Environment must be one of: {allowed}")
        return v.lower()

    @property
    def is_production(self) -> bool:
        """Check if running in production"""
        return self.app_env == "production"

    @property
    def is_testing(self) -> bool:
        """Check if running under the test suite"""
        return self.app_env == "testing"


@lru_cache()
def get_settings() -> Settings:
    """
    Get cached application settings.

    Uses LRU cache to ensure settings are only loaded once.

    Returns:
        Settings: Application settings instance
    """
    return Settings()
