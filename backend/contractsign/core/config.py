from functools import lru_cache
from typing import List, Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Global contractsign settings.
    Values are read from the environment and from the ``.env`` file.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Project
    project_name: str = "contractsign API"
    api_v1_str: str = "/api/v1"
    debug: bool = False

    # Database
    database_url: str = "sqlite:///./contractsign.db"

    # Storage (local disk or S3 / MinIO)
    contractsign_storage: str = "_storage"
    s3_endpoint_url: Optional[str] = None
    s3_access_key: Optional[str] = None
    s3_secret_key: Optional[str] = None
    s3_bucket_documents: str = "contractsign-documents"

    # Logging
    log_level: str = "INFO"
    log_file: Optional[str] = None

    # Document conversion (LibreOffice)
    converter_binaries: List[str] = ["soffice", "libreoffice"]
    converter_windows_paths: List[str] = [
        "C:\\Program Files\\LibreOffice\\program\\soffice.exe",
        "C:\\Program Files (x86)\\LibreOffice\\program\\soffice.exe",
    ]
    converter_timeout_seconds: float = 30.0
    converter_archival: bool = False
    converter_allow_draft: bool = False

    # Marker location / compositing
    text_layer_enabled: bool = True
    signature_max_width: float = 180.0
    signature_max_height: float = 60.0
    signature_redaction_padding: float = 2.0
    signature_anchor: str = "bottom-right"
    signature_anchor_margin: float = 50.0
    signature_anchor_base_y: float = 80.0
    signature_anchor_spacing: float = 10.0
    signature_custom_x: Optional[float] = None
    signature_custom_y: Optional[float] = None
    signature_target_page: int = -1

    # Ephemeral certificates
    certificate_key_size: int = 2048
    certificate_country: str = "HU"
    certificate_p12_password: str = ""

    # PAdES signing
    pades_reason: str = "Elektronikus aláírás (eIDAS AES)"
    pades_location: Optional[str] = "Magyarország"
    pades_bytes_reserved: int = 16384
    signing_mode: str = "regenerate"


@lru_cache
def get_settings() -> Settings:
    """Return the cached global settings instance."""
    return Settings()


settings = get_settings()
