from pydantic_settings import BaseSettings
from functools import lru_cache
from typing import Literal


class Settings(BaseSettings):
    """
    Application configuration loaded from environment variables.
    Uses pydantic for validation and type safety.
    """
    environment: str = "development"
    debug: bool = True
    log_level: str = "INFO"

    database_url: str = "sqlite:///./tracker.db"

    # Key for the opaque identifier codec (AES, 16/24/32 bytes)
    # Rotating it breaks every photo URL and encrypted user id handed out so far
    encryption_key: str

    # Argon2id parameters for newly created hashes
    # Existing hashes carry their own parameters and keep verifying
    argon2_memory_cost: int = 64 * 1024
    argon2_time_cost: int = 3
    argon2_parallelism: int = 2
    argon2_salt_length: int = 16
    argon2_hash_length: int = 32

    # Photo attachments
    upload_dir: str = "uploads"
    max_upload_bytes: int = 10 * 1024 * 1024

    # Whether a connected viewer may modify the owner's transactions
    viewer_write_access: bool = False

    # "global": tag names shared by all users, "user": unique per owner
    tag_scope: Literal["global", "user"] = "global"

    cors_origins: list[str] = []

    class Config:
        env_file = ".env"
        case_sensitive = False


@lru_cache
def get_settings() -> Settings:
    """
    Cached settings instance. Load once, reuse throughout application lifecycle.
    """
    return Settings()
