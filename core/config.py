# WORKFLOW: Core configuration management for the Tariff Engine API.
# Used by: All modules throughout the application
# Configuration includes:
# - Database connection settings
# - Cache backend and per-operation TTLs
# - Remote classification API (XI tariff API) settings
# - Rate extraction constants (VAT standard rate, area ids)
# - Translation service settings
# - Bulk sync settings (data directory, batch size, scheduler)
# - Security settings (JWT, API keys)
# - API settings (CORS, server, logging)
#
# Loaded at startup and used by all services for consistent configuration.

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    # Database
    database_url: str = "sqlite:///./tariff_engine.db"

    # Cache
    cache_backend: str = "memory"  # memory | redis
    redis_url: str = "redis://localhost:6379"
    cache_key_prefix: str = "tariff"

    # Cache TTLs (seconds)
    ttl_validation: int = 60 * 60
    ttl_hierarchy: int = 30 * 60
    ttl_search: int = 10 * 60
    ttl_rate_lookup: int = 60 * 60
    ttl_lookup_v2: int = 15 * 60
    ttl_declarable: int = 30 * 60
    ttl_country_codes: int = 7 * 24 * 60 * 60
    ttl_country_codes_fallback: int = 24 * 60 * 60
    ttl_translation: int = 7 * 24 * 60 * 60

    # Remote classification API
    taric_api_base: str = "https://www.trade-tariff.service.gov.uk/xi/api/v2"
    taric_api_source: str = "xi_api"
    taric_request_timeout: float = 10.0
    taric_user_agent: str = "TariffEngine/1.0"
    health_check_timeout: float = 10.0

    # Rate extraction
    vat_standard_rate: float = 19.0
    erga_omnes_area_id: str = "1011"
    third_countries_area_id: str = "2005"

    # Batch lookup
    batch_concurrency: int = 3
    batch_delay_seconds: float = 0.3
    batch_max_codes: int = 50

    # Hierarchy rate enrichment
    hierarchy_rate_limit_subheading: int = 20
    hierarchy_rate_limit_heading: int = 30

    # Translation
    translation_enabled: bool = True
    translation_api_url: str = "https://translate.googleapis.com/translate_a/single"
    translation_source_lang: str = "en"
    translation_target_lang: str = "zh-CN"
    translation_timeout: float = 5.0
    translation_max_retries: int = 3
    translation_batch_concurrency: int = 3
    translation_batch_delay_seconds: float = 0.5
    translation_max_measure_texts: int = 10

    # Bulk sync
    taric_data_dir: str = "data/taric"
    nomenclature_file: str = "Nomenclature_EN.xlsx"
    duties_file: str = "Duties_Import.xlsx"
    sync_batch_size: int = 500
    sync_scheduler_enabled: bool = False
    sync_scheduler_hour: int = 2

    # Security
    secret_key: str = "your-secret-key-here-change-in-production"
    algorithm: str = "HS256"
    api_keys: list[str] = []

    # API
    api_v1_prefix: str = "/api/v1"
    project_name: str = "Tariff Engine API"
    version: str = "1.0.0"

    # Environment
    environment: str = "development"
    debug: bool = False

    # Logging
    log_level: str = "INFO"

    # CORS
    allowed_origins: list[str] = ["*"]
    allowed_methods: list[str] = ["*"]
    allowed_headers: list[str] = ["*"]

    # API Server
    api_host: str = "0.0.0.0"
    api_port: int = 8001

    class Config:
        env_file = ".env"
        case_sensitive = False


settings = Settings()
