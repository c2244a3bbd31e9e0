import os
from pathlib import Path

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    APP_NAME: str = "Reqport"
    APP_VERSION: str = "1.0.0"
    ENVIRONMENT: str = "development"

    DATABASE_URL: str = "sqlite:///./data/reqport.db"

    CORS_ORIGINS: str = "http://localhost:5173"

    # Detections scoring below this are rejected before parsing
    DETECTION_MIN_CONFIDENCE: float = 0.5
    MAX_FOLDER_DEPTH: int = 20
    MAX_IMPORT_BYTES: int = 20 * 1024 * 1024

    # Idle import sessions are dropped after this many seconds
    SESSION_TTL_SECONDS: int = 3600

    model_config = {"env_file": ".env", "extra": "ignore"}


settings = Settings()

_db_path = os.getenv("REQPORT_DB_PATH")
if _db_path:
    db_path = Path(_db_path).expanduser().resolve()
    db_path.parent.mkdir(parents=True, exist_ok=True)
    settings.DATABASE_URL = f"sqlite:///{db_path.as_posix()}"
else:
    _data_dir = os.getenv("REQPORT_DATA_DIR")
    if _data_dir:
        data_dir = Path(_data_dir).expanduser().resolve()
        data_dir.mkdir(parents=True, exist_ok=True)
        settings.DATABASE_URL = f"sqlite:///{(data_dir / 'reqport.db').as_posix()}"
