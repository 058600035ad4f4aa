from typing import List

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    MONGO_URI: str = "mongodb://localhost:27017"
    DB_NAME: str = "checklists"
    AUTOSAVE_INTERVAL_SECONDS: float = 30.0
    SAVE_TIMEOUT_SECONDS: float = 15.0
    DRAG_ACTIVATION_DISTANCE: float = 8.0  # pixels of pointer travel before a press becomes a drag
    LOG_LEVEL: str = "INFO"
    CORS_ORIGINS: List[str] = ["*"]

    class Config:
        env_file = ".env"


settings = Settings()
