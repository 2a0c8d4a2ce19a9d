"""
Configuration management for the Jerry voice agent
"""

import os
from pathlib import Path
from dotenv import load_dotenv
from pydantic import BaseModel

# Load environment variables
load_dotenv()

PROJECT_ROOT = Path(__file__).parent.parent.parent


class Config(BaseModel):
    """Application configuration"""

    # Server settings
    host: str = os.getenv("HOST", "0.0.0.0")
    port: int = int(os.getenv("PORT", "3000"))
    debug: bool = os.getenv("DEBUG", "false").lower() == "true"
    log_level: str = os.getenv("LOG_LEVEL", "INFO")
    log_dir: str = os.getenv("LOG_DIR", str(PROJECT_ROOT / "logs"))

    # Google Gemini settings
    google_api_key: str = os.getenv("GOOGLE_API_KEY", "")
    gemini_model: str = os.getenv("GEMINI_MODEL", "gemini-2.0-flash")
    gemini_base_url: str = os.getenv("GEMINI_BASE_URL", "https://generativelanguage.googleapis.com/v1beta")
    gemini_temperature: float = float(os.getenv("GEMINI_TEMPERATURE", "0.7"))
    gemini_max_tokens: int = int(os.getenv("GEMINI_MAX_TOKENS", "1000"))
    gemini_top_p: float = float(os.getenv("GEMINI_TOP_P", "0.8"))
    gemini_top_k: int = int(os.getenv("GEMINI_TOP_K", "10"))
    gemini_timeout: float = float(os.getenv("GEMINI_TIMEOUT", "15.0"))
    gemini_function_calling: bool = os.getenv("GEMINI_FUNCTION_CALLING", "false").lower() == "true"

    # Conversation settings
    transcript_window: int = int(os.getenv("TRANSCRIPT_WINDOW", "6"))
    interview_question_count: int = int(os.getenv("INTERVIEW_QUESTION_COUNT", "5"))
    end_call_delay: float = float(os.getenv("END_CALL_DELAY", "2.0"))

    # Speech settings (forwarded to the browser synthesizer)
    tts_voice: str = os.getenv("TTS_VOICE", "")
    tts_rate: float = float(os.getenv("TTS_RATE", "0.9"))
    tts_pitch: float = float(os.getenv("TTS_PITCH", "1.0"))
    tts_volume: float = float(os.getenv("TTS_VOLUME", "0.8"))
    speech_lang: str = os.getenv("SPEECH_LANG", "en-US")

    # Storage
    database_url: str = os.getenv("DATABASE_URL", "")
    failed_saves_dir: str = os.getenv("FAILED_SAVES_DIR", str(PROJECT_ROOT / "data" / "failed_saves"))
    contacts_file: str = os.getenv("CONTACTS_FILE", str(PROJECT_ROOT / "data" / "contacts.json"))

    # Persona
    company_name: str = os.getenv("COMPANY_NAME", "Solar Industries India Ltd")
    agent_name: str = os.getenv("AGENT_NAME", "Jerry")

    @property
    def gemini_generate_url(self) -> str:
        return f"{self.gemini_base_url.rstrip('/')}/models/{self.gemini_model}:generateContent"

    def validate_config(self) -> list[str]:
        """Validate required configuration values"""
        errors = []
        if not self.google_api_key:
            errors.append("GOOGLE_API_KEY is required (replies will use canned fallbacks)")
        if not self.database_url:
            errors.append("DATABASE_URL is required (call logs will go to the backup queue)")
        if self.transcript_window < 1:
            errors.append("TRANSCRIPT_WINDOW must be at least 1")
        return errors


# Global config instance
config = Config()
