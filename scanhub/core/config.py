"""
Configuration Management Module
===============================
Centralized configuration management with environment variable support.

This module provides:
- Environment-based configuration
- Validation of required settings
- Default values for optional settings
- Configuration singleton pattern
"""

import os
from dataclasses import dataclass, field
from typing import Optional, Dict, Any, List
from functools import lru_cache


MAX_FILE_SIZE = 64 * 1024 * 1024  # 64MB
MAX_AVATAR_SIZE = 2 * 1024 * 1024  # 2MB


def _env_bool(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).lower() in ("1", "true", "yes")


@dataclass
class MessagingConfig:
    """Message broker configuration."""

    broker_type: str = "rabbitmq"  # rabbitmq, kafka or memory
    host: str = "localhost"
    port: int = 5672
    username: str = "guest"
    password: str = "guest"
    virtual_host: str = "/"
    exchange_name: str = "scanhub_exchange"

    # Scan jobs are published under this topic / routing key
    scan_topic: str = "scan"

    # Kafka-specific settings
    kafka_bootstrap_servers: str = "localhost:9092"

    # Connection settings
    connection_timeout: int = 30
    publish_timeout: float = 10.0


@dataclass
class StorageConfig:
    """Storage backend configuration."""

    # Document database
    database_url: str = "postgresql://localhost:5432/scanhub"
    database_pool_size: int = 10
    database_max_overflow: int = 20
    document_backend: str = "sql"  # sql or memory
    document_timeout: float = 10.0

    # Optimistic concurrency
    occ_max_retries: int = 10
    occ_backoff_base: float = 0.01  # seconds

    # Blob storage
    blob_backend: str = "filesystem"  # filesystem, s3, memory
    blob_path: str = "./data/blobs"
    blob_timeout: float = 30.0
    files_bucket: str = "samples"
    avatars_bucket: str = "avatars"
    max_file_size: int = MAX_FILE_SIZE
    max_avatar_size: int = MAX_AVATAR_SIZE
    # Downloads are wrapped in an AES zip protected by this password
    archive_password: str = "infected"

    # S3/MinIO settings
    s3_endpoint: Optional[str] = None
    s3_region: Optional[str] = None
    s3_access_key: Optional[str] = None
    s3_secret_key: Optional[str] = None


@dataclass
class APIConfig:
    """API server configuration."""

    host: str = "0.0.0.0"
    port: int = 8000
    debug: bool = False
    workers: int = 4

    # Authentication
    jwt_secret: Optional[str] = None
    jwt_algorithm: str = "HS256"
    jwt_expiry_hours: int = 72
    email_token_expiry_hours: int = 1

    # Links embedded in emails point here
    ui_address: str = "http://localhost:3000"

    # CORS
    cors_origins: List[str] = field(default_factory=lambda: ["*"])

    # Admin account created at startup when a password is given
    admin_username: str = "admin"
    admin_email: str = "admin@localhost"
    admin_password: Optional[str] = None


@dataclass
class SMTPConfig:
    """Outgoing email configuration."""

    enabled: bool = False
    server: str = "localhost"
    port: int = 587
    username: Optional[str] = None
    password: Optional[str] = None
    use_tls: bool = True
    sender_identity: str = "ScanHub"
    sender_email: str = "noreply@localhost"
    timeout: float = 10.0


@dataclass
class SocialConfig:
    """Social graph behaviour switches."""

    # Deleting a comment leaves the author's mirror copy in place unless set
    cleanup_comment_mirror: bool = False
    max_comment_length: int = 4096


@dataclass
class LoggingConfig:
    """Logging configuration."""

    level: str = "INFO"
    format: str = "json"  # json or text
    output: str = "stdout"  # stdout, file, both
    file_path: str = "./logs/scanhub.log"
    max_file_size: int = 10_000_000  # 10MB
    backup_count: int = 5


@dataclass
class Config:
    """
    Main configuration class aggregating all settings.

    Configuration is loaded from environment variables with sensible defaults.
    All sensitive values should be provided via environment variables in production.
    """

    # Environment
    environment: str = "development"
    debug: bool = False

    # Component configs
    messaging: MessagingConfig = field(default_factory=MessagingConfig)
    storage: StorageConfig = field(default_factory=StorageConfig)
    api: APIConfig = field(default_factory=APIConfig)
    smtp: SMTPConfig = field(default_factory=SMTPConfig)
    social: SocialConfig = field(default_factory=SocialConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    @classmethod
    def from_env(cls) -> "Config":
        """
        Create configuration from environment variables.

        Environment variables follow the pattern:
        SCANHUB_{SECTION}_{SETTING} (e.g., SCANHUB_MESSAGING_HOST)

        Returns:
            Config: Populated configuration instance
        """
        messaging = MessagingConfig(
            broker_type=os.getenv("SCANHUB_MESSAGING_BROKER_TYPE", "rabbitmq"),
            host=os.getenv("SCANHUB_MESSAGING_HOST", "localhost"),
            port=int(os.getenv("SCANHUB_MESSAGING_PORT", "5672")),
            username=os.getenv("SCANHUB_MESSAGING_USERNAME", "guest"),
            password=os.getenv("SCANHUB_MESSAGING_PASSWORD", "guest"),
            virtual_host=os.getenv("SCANHUB_MESSAGING_VHOST", "/"),
            exchange_name=os.getenv("SCANHUB_MESSAGING_EXCHANGE", "scanhub_exchange"),
            scan_topic=os.getenv("SCANHUB_MESSAGING_SCAN_TOPIC", "scan"),
            kafka_bootstrap_servers=os.getenv(
                "SCANHUB_KAFKA_BOOTSTRAP_SERVERS", "localhost:9092"
            ),
            publish_timeout=float(os.getenv("SCANHUB_MESSAGING_PUBLISH_TIMEOUT", "10")),
        )

        storage = StorageConfig(
            database_url=os.getenv(
                "SCANHUB_DATABASE_URL", "postgresql://localhost:5432/scanhub"
            ),
            database_pool_size=int(os.getenv("SCANHUB_DATABASE_POOL_SIZE", "10")),
            document_backend=os.getenv("SCANHUB_DOCUMENT_BACKEND", "sql"),
            document_timeout=float(os.getenv("SCANHUB_DOCUMENT_TIMEOUT", "10")),
            occ_max_retries=int(os.getenv("SCANHUB_OCC_MAX_RETRIES", "10")),
            blob_backend=os.getenv("SCANHUB_BLOB_BACKEND", "filesystem"),
            blob_path=os.getenv("SCANHUB_BLOB_PATH", "./data/blobs"),
            blob_timeout=float(os.getenv("SCANHUB_BLOB_TIMEOUT", "30")),
            files_bucket=os.getenv("SCANHUB_FILES_BUCKET", "samples"),
            avatars_bucket=os.getenv("SCANHUB_AVATARS_BUCKET", "avatars"),
            max_file_size=int(os.getenv("SCANHUB_MAX_FILE_SIZE", str(MAX_FILE_SIZE))),
            archive_password=os.getenv("SCANHUB_ARCHIVE_PASSWORD", "infected"),
            s3_endpoint=os.getenv("SCANHUB_S3_ENDPOINT"),
            s3_region=os.getenv("SCANHUB_S3_REGION"),
            s3_access_key=os.getenv("SCANHUB_S3_ACCESS_KEY"),
            s3_secret_key=os.getenv("SCANHUB_S3_SECRET_KEY"),
        )

        api = APIConfig(
            host=os.getenv("SCANHUB_API_HOST", "0.0.0.0"),
            port=int(os.getenv("SCANHUB_API_PORT", "8000")),
            debug=_env_bool("SCANHUB_API_DEBUG"),
            workers=int(os.getenv("SCANHUB_API_WORKERS", "4")),
            jwt_secret=os.getenv("SCANHUB_JWT_SECRET"),
            jwt_expiry_hours=int(os.getenv("SCANHUB_JWT_EXPIRY_HOURS", "72")),
            ui_address=os.getenv("SCANHUB_UI_ADDRESS", "http://localhost:3000"),
            cors_origins=os.getenv("SCANHUB_CORS_ORIGINS", "*").split(","),
            admin_username=os.getenv("SCANHUB_ADMIN_USERNAME", "admin"),
            admin_email=os.getenv("SCANHUB_ADMIN_EMAIL", "admin@localhost"),
            admin_password=os.getenv("SCANHUB_ADMIN_PASSWORD"),
        )

        smtp = SMTPConfig(
            enabled=_env_bool("SCANHUB_SMTP_ENABLED"),
            server=os.getenv("SCANHUB_SMTP_SERVER", "localhost"),
            port=int(os.getenv("SCANHUB_SMTP_PORT", "587")),
            username=os.getenv("SCANHUB_SMTP_USERNAME"),
            password=os.getenv("SCANHUB_SMTP_PASSWORD"),
            use_tls=_env_bool("SCANHUB_SMTP_TLS", "true"),
            sender_identity=os.getenv("SCANHUB_SMTP_SENDER_IDENTITY", "ScanHub"),
            sender_email=os.getenv("SCANHUB_SMTP_SENDER_EMAIL", "noreply@localhost"),
        )

        social = SocialConfig(
            cleanup_comment_mirror=_env_bool("SCANHUB_CLEANUP_COMMENT_MIRROR"),
        )

        logging_config = LoggingConfig(
            level=os.getenv("SCANHUB_LOG_LEVEL", "INFO"),
            format=os.getenv("SCANHUB_LOG_FORMAT", "json"),
            output=os.getenv("SCANHUB_LOG_OUTPUT", "stdout"),
            file_path=os.getenv("SCANHUB_LOG_FILE", "./logs/scanhub.log"),
        )

        return cls(
            environment=os.getenv("SCANHUB_ENVIRONMENT", "development"),
            debug=_env_bool("SCANHUB_DEBUG"),
            messaging=messaging,
            storage=storage,
            api=api,
            smtp=smtp,
            social=social,
            logging=logging_config,
        )

    def validate(self) -> List[str]:
        """
        Validate configuration and return list of issues.

        Returns:
            List[str]: List of validation error messages
        """
        issues = []

        if self.storage.max_file_size <= 0:
            issues.append("Maximum file size must be positive")
        if self.storage.occ_max_retries < 1:
            issues.append("At least one optimistic concurrency attempt is required")
        if self.storage.blob_backend == "s3" and not self.storage.s3_endpoint:
            issues.append("S3 endpoint is required for the s3 blob backend")

        # Check for required production settings
        if self.environment == "production":
            if not self.api.jwt_secret:
                issues.append("JWT secret is required in production")
            if self.api.cors_origins == ["*"]:
                issues.append("CORS origins should be restricted in production")
            if self.messaging.password == "guest":
                issues.append("Default messaging password should not be used in production")
            if self.messaging.broker_type == "memory":
                issues.append("In-memory broker cannot reach scan workers in production")

        return issues

    def to_dict(self) -> Dict[str, Any]:
        """
        Convert configuration to dictionary (excluding sensitive values).

        Returns:
            Dict[str, Any]: Configuration as dictionary
        """
        return {
            "environment": self.environment,
            "debug": self.debug,
            "messaging": {
                "broker_type": self.messaging.broker_type,
                "host": self.messaging.host,
                "port": self.messaging.port,
                "exchange_name": self.messaging.exchange_name,
                "scan_topic": self.messaging.scan_topic,
            },
            "storage": {
                "document_backend": self.storage.document_backend,
                "database_pool_size": self.storage.database_pool_size,
                "blob_backend": self.storage.blob_backend,
                "files_bucket": self.storage.files_bucket,
                "avatars_bucket": self.storage.avatars_bucket,
                "max_file_size": self.storage.max_file_size,
                "occ_max_retries": self.storage.occ_max_retries,
            },
            "api": {
                "host": self.api.host,
                "port": self.api.port,
                "workers": self.api.workers,
                "ui_address": self.api.ui_address,
            },
            "smtp": {
                "enabled": self.smtp.enabled,
                "server": self.smtp.server,
                "port": self.smtp.port,
            },
            "social": {
                "cleanup_comment_mirror": self.social.cleanup_comment_mirror,
            },
            "logging": {
                "level": self.logging.level,
                "format": self.logging.format,
                "output": self.logging.output,
            },
        }


# Singleton config instance
_config: Optional[Config] = None


@lru_cache(maxsize=1)
def get_config() -> Config:
    """
    Get the global configuration instance.

    Returns:
        Config: Global configuration singleton
    """
    global _config
    if _config is None:
        _config = Config.from_env()
    return _config


def reload_config() -> Config:
    """
    Reload configuration from environment.

    Returns:
        Config: New configuration instance
    """
    global _config
    get_config.cache_clear()
    _config = Config.from_env()
    return _config
