"""
Configuration settings for the DeepTutor backend.
Loads environment variables and provides application-wide settings.
"""
from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import List


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Gemini Configuration (server-side credential, only the proxy reads it)
    GEMINI_API_KEY: str = ""
    GEMINI_MODEL: str = "gemini-3-flash-preview"
    GEMINI_BASE_URL: str = "https://generativelanguage.googleapis.com/v1beta"

    # AI client configuration
    AI_PROXY_URL: str = "http://localhost:8000/api/ai/proxy"
    AI_TIMEOUT: int = 180  # generation on a full document can be slow
    AI_TEMPERATURE: float = 0.2

    # Durable storage for the workspace store
    STORAGE_URL: str = "sqlite:///./deeptutor.db"
    STORAGE_KEY: str = "learnverse-v5-storage"

    # Upload limits
    MAX_UPLOAD_SIZE: int = int(5.5 * 1024 * 1024)  # 5.5 MiB
    SUPPORTED_FILE_TYPES: List[str] = [".pdf", ".txt", ".ppt", ".pptx"]

    # Server Configuration
    HOST: str = "0.0.0.0"
    PORT: int = 8000
    ALLOWED_ORIGINS: str = "http://localhost:3000,http://localhost:5173"

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore"
    )

    def get_allowed_origins(self) -> List[str]:
        """Parse ALLOWED_ORIGINS string into a list."""
        return [origin.strip() for origin in self.ALLOWED_ORIGINS.split(",")]


# Global settings instance
settings = Settings()
