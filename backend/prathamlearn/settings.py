from pathlib import Path

from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field


class Settings(BaseSettings):
    gemini_api_key: str | None = Field(default=None, validation_alias="GEMINI_API_KEY")
    # Provider can be "vertex" (Vertex AI Express) or "ai_studio" (Generative Language API)
    gemini_provider: str = Field(default="ai_studio", validation_alias="GEMINI_PROVIDER")
    gemini_model: str = Field(default="gemini-2.5-flash", validation_alias="GEMINI_MODEL")
    # Used for handwritten sheets; image material goes through OCR instead
    gemini_model_vision: str | None = Field(default=None, validation_alias="GEMINI_MODEL_VISION")
    vertex_region: str = Field(default="us-central1", validation_alias="GEMINI_VERTEX_REGION")
    vertex_project: str | None = Field(default=None, validation_alias="GEMINI_VERTEX_PROJECT")
    gemini_timeout_seconds: float = Field(default=60.0, validation_alias="GEMINI_TIMEOUT_SECONDS")

    # OpenRouter fallback for text-only prompts (optional)
    openrouter_api_key: str | None = Field(default=None, validation_alias="OPENROUTER_API_KEY")
    openrouter_model: str = Field(default="x-ai/grok-4-fast:free", validation_alias="OPENROUTER_MODEL")
    openrouter_base_url: str = Field(default="https://openrouter.ai/api/v1/chat/completions", validation_alias="OPENROUTER_BASE_URL")
    openrouter_referer: str = Field(default="https://localhost", validation_alias="OPENROUTER_HTTP_REFERER")
    openrouter_title: str = Field(default="PrathamLearn", validation_alias="OPENROUTER_TITLE")

    # Realtime voice sessions are minted against the OpenAI realtime API
    openai_api_key: str | None = Field(default=None, validation_alias="OPENAI_API_KEY")
    openai_realtime_url: str = Field(default="https://api.openai.com/v1/realtime/sessions", validation_alias="OPENAI_REALTIME_URL")
    openai_realtime_model: str = Field(default="gpt-4o-realtime-preview-2024-12-17", validation_alias="OPENAI_REALTIME_MODEL")
    openai_realtime_voice: str = Field(default="alloy", validation_alias="OPENAI_REALTIME_VOICE")

    # Google Cloud speech fallbacks (credentials come from GOOGLE_APPLICATION_CREDENTIALS)
    speech_language_en: str = Field(default="en-IN", validation_alias="SPEECH_LANGUAGE_EN")
    speech_language_hi: str = Field(default="hi-IN", validation_alias="SPEECH_LANGUAGE_HI")
    tts_voice_name: str | None = Field(default=None, validation_alias="TTS_VOICE_NAME")

    # Storage
    data_dir: str = Field(default="./data", validation_alias="DATA_DIR")
    papers_dir: str = Field(default="./public/papers", validation_alias="PAPERS_DIR")
    database_url: str | None = Field(default=None, validation_alias="DATABASE_URL")

    cors_origins: list[str] = Field(default=["*"], validation_alias="CORS_ORIGINS")
    debug: bool = Field(default=False, validation_alias="DEBUG")
    log_level: str = Field(default="INFO", validation_alias="LOG_LEVEL")

    # pydantic-settings v2 style config
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    def resolved_database_url(self) -> str:
        if self.database_url:
            return self.database_url
        return f"sqlite:///{Path(self.data_dir) / 'prathamlearn.db'}"


settings = Settings()
