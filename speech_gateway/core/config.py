from pathlib import Path
from typing import List, Optional

from pydantic import Field
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    # Storage for temp credential files
    TEMP_DIR: str = Field(default="/tmp/speech_gateway")
    CREDENTIAL_FILE_TTL_SEC: float = Field(
        default=5.0,
        description="Grace period before a temporary service account file is deleted",
    )

    # Outbound HTTP
    PROXY_URL: Optional[str] = Field(default=None, description="Optional HTTP(S) proxy for provider calls")
    HTTP_TIMEOUT_SEC: float = Field(default=30.0)

    # Google Speech-to-Text
    GOOGLE_DEFAULT_PROJECT: str = Field(default="speech-to-text-proxy")
    GOOGLE_DEFAULT_REGION: str = Field(default="us-central1")
    GOOGLE_V1_MODEL: str = Field(default="default")
    GOOGLE_V2_MODEL: str = Field(default="chirp")
    GOOGLE_DEFAULT_LANGUAGE: str = Field(default="en-US")
    # Browser MediaRecorder output is webm/opus at 48 kHz
    GOOGLE_STREAM_ENCODING: str = Field(default="WEBM_OPUS")
    GOOGLE_STREAM_SAMPLE_RATE: int = Field(default=48000)

    # Groq Whisper
    GROQ_API_URL: str = Field(default="https://api.groq.com/openai/v1/audio/transcriptions")
    GROQ_DEFAULT_MODEL: str = Field(default="whisper-large-v3")
    GROQ_MIN_INTERVAL_SEC: float = Field(
        default=2.0,
        description="Minimum spacing between pseudo-streaming submissions",
    )

    LOG_LEVEL: str = Field(default="INFO")
    CORS_ORIGINS: List[str] = Field(default=["*"])

    class Config:
        env_file = ".env"


settings = Settings()

# Ensure temp directory exists
Path(settings.TEMP_DIR).mkdir(parents=True, exist_ok=True)
