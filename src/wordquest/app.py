import logging
import os
from contextlib import asynccontextmanager
from logging.handlers import RotatingFileHandler

from fastapi import FastAPI

from .config import settings
from .database import init_db
from .errors import WordQuestError
from .globals import vocab_manager
from .log_handler import SQLiteHandler
from .router import handle_wordquest_error, router


# --- Logging Setup ---
def setup_logging():
    logger = logging.getLogger("wordquest")
    logger.setLevel(logging.INFO)
    if logger.handlers:
        return logger

    if not os.path.exists(settings.LOG_DIR):
        os.makedirs(settings.LOG_DIR, exist_ok=True)
    log_path = os.path.join(settings.LOG_DIR, settings.LOG_FILE)
    formatter = logging.Formatter("%(asctime)s - %(levelname)s - %(message)s")
    file_handler = RotatingFileHandler(log_path, maxBytes=5_000_000, backupCount=3)
    file_handler.setFormatter(formatter)
    logger.addHandler(file_handler)

    if settings.LOG_TO_DB:
        init_db()
        db_handler = SQLiteHandler()
        db_handler.setFormatter(formatter)
        logger.addHandler(db_handler)

    # Also configure root logger to see logs from other libraries
    logging.basicConfig(level=logging.INFO)
    return logger


# --- Lifecycle ---
@asynccontextmanager
async def lifespan(app: FastAPI):
    if settings.STORE_BACKEND == "sqlite":
        init_db()
    vocab_manager.load_all()
    yield


# --- App Factory ---
def create_app() -> FastAPI:
    setup_logging()
    app = FastAPI(
        title=settings.PROJECT_NAME,
        debug=settings.DEBUG,
        lifespan=lifespan,
        root_path=settings.ROOT_PATH,
    )

    app.add_exception_handler(WordQuestError, handle_wordquest_error)
    app.include_router(router)

    return app
