from typing import List

from pydantic_settings import BaseSettings, SettingsConfigDict

from codelens.constants import AI_GATEWAY_URL, MODEL_NAME

class Settings(BaseSettings):
    AI_GATEWAY_URL: str = AI_GATEWAY_URL
    AI_GATEWAY_API_KEY: str = ""
    MODEL_NAME: str = MODEL_NAME
    REQUEST_TIMEOUT: float = 60.0
    RATE_LIMIT: str = "10/minute"
    CORS_ORIGINS: List[str] = [
        "http://localhost:5173",
        "http://127.0.0.1:5173",
        "http://localhost:3000",
        "http://127.0.0.1:3000",
        "http://localhost:8000",
        "http://127.0.0.1:8000",
    ]

    model_config = SettingsConfigDict(env_file=".env")
