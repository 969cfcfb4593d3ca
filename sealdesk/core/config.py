# sealdesk/core/config.py

from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Settings for the signing engine
    """

    model_config = SettingsConfigDict(
        env_file=".env", extra="ignore", case_sensitive=False
    )

    environment: str = "development"
    app_name: str = "Sealdesk Signing Engine"
    app_base_url: str = "http://localhost:8000"
    allowed_cors_urls: str = "*"

    db_url: str = "sqlite:///./sealdesk.db"

    redis_host: str = "localhost"
    redis_port: int = 6379
    redis_username: Optional[str] = None
    redis_password: Optional[str] = None

    # Document storage
    document_storage_backend: str = "local"
    document_storage_dir: str = "./storage"
    s3_bucket_name: Optional[str] = None

    aws_access_key_id: Optional[str] = None
    aws_secret_access_key: Optional[str] = None
    aws_region: Optional[str] = None
    aws_sns_sender_id: Optional[str] = None
    aws_ses_sender_email: Optional[str] = None

    # Workflow
    signing_token_expiry_hours: int = 72
    reminder_interval_hours: int = 48

    # Identity ceremony
    otp_ttl_minutes: int = 10
    qes_session_ttl_minutes: int = 30
    id_verification_provider: Optional[str] = None
    jumio_api_url: str = "https://netverify.com/api/v4"
    jumio_api_key: Optional[str] = None
    onfido_api_url: str = "https://api.onfido.com/v3.6"
    onfido_api_token: Optional[str] = None

    # Qualified signatures
    qes_provider: Optional[str] = None
    swisscom_ais_url: str = "https://ais.swisscom.com/AIS-Server/rs/v1.0"
    swisscom_ais_key: Optional[str] = None
    namirial_api_url: str = "https://sws.namirial.com/SignEngineWeb/rest/service"
    namirial_api_key: Optional[str] = None

    # Integrations
    webhook_url: Optional[str] = None
    webhook_secret: Optional[str] = None
    slack_webhook_url: Optional[str] = None
    integration_timeout_seconds: int = 10
    # Webhook deliveries run on the worker; attempt n waits backoff * 2**(n-1) seconds
    webhook_max_retries: int = 2
    webhook_retry_backoff_seconds: int = 1

    # Logging
    log_level: str = "INFO"
    log_json: bool = False
    log_file: Optional[str] = None

    @property
    def redis_url(self) -> str:
        """
        Redis connection URL
        """
        if self.redis_username and self.redis_password:
            return f"redis://{self.redis_username}:{self.redis_password}@{self.redis_host}:{self.redis_port}"
        elif self.redis_password:
            return f"redis://:{self.redis_password}@{self.redis_host}:{self.redis_port}"
        else:
            return f"redis://{self.redis_host}:{self.redis_port}"

    @property
    def celery_broker(self) -> str:
        """
        Celery broker URL
        """
        return f"{self.redis_url}/1"

    @property
    def celery_backend(self) -> str:
        """
        Celery backend URL
        """
        return f"{self.redis_url}/2"

    @property
    def is_production(self) -> bool:
        return self.environment.lower() == "production"


settings = Settings()
