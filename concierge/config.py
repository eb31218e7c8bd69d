from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    model_config = {
        "env_file": ".env",
        "extra": "ignore",
        "env_prefix": "",
        "case_sensitive": False,
    }

    # Database (empty = in-memory store)
    database_url: str = ""

    # Cloudflare R2
    r2_account_id: str = ""
    r2_access_key_id: str = ""
    r2_secret_access_key: str = ""
    r2_bucket_name: str = "concierge-assets"

    # AI APIs
    anthropic_api_key: str = ""
    google_ai_api_key: str = ""
    gemini_model: str = "gemini-2.5-flash-image"
    vision_model: str = "claude-haiku-4-5-20251001"

    # Providers
    use_mock_providers: bool = True
    provider_timeout_seconds: float = 120.0
    concept_variant_count: int = 6

    # Jobs
    job_max_retries: int = 3

    # Image quality
    min_image_resolution: int = 512
    blur_threshold: float = 60.0

    # App
    environment: str = "development"
    log_level: str = "INFO"
    log_file: str = ""
    presigned_url_expiry_seconds: int = 3600


settings = Settings()
