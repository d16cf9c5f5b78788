import os


class Settings:
    PROJECT_NAME: str = "wordquest"
    DEBUG: bool = os.environ.get("DEBUG", "false").lower() == "true"
    LOG_DIR: str = "log"
    LOG_FILE: str = "wordquest.log"
    LOG_TO_DB: bool = os.environ.get("LOG_TO_DB", "false").lower() == "true"
    DB_DIR: str = "db"
    DB_FILE: str = "wordquest.db"
    STORE_BACKEND: str = os.environ.get("STORE_BACKEND", "memory")  # memory | sqlite
    VOCAB_DIR: str = "vocabulary"
    DEFAULT_WORD_COUNT: int = 10
    POINTS_PER_LEVEL: int = 100
    DEFAULT_POINTS_BOOST: int = 50
    HINTS_TIME_LIMIT: int = 300
    GAME_TIME_LIMIT: int = 600
    ROOT_PATH: str = os.environ.get("ROOT_PATH", "")


settings = Settings()
