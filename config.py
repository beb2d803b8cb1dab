"""
Runtime configuration

Everything is read from the environment (a local .env file is honoured).
Settings are resolved once at startup and handed to the app; handlers
never read os.environ themselves.
"""

import os
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path

from dotenv import load_dotenv

BASE_DIR = Path(__file__).resolve().parent


@dataclass(frozen=True)
class Settings:
    port: int = 3000
    database_url: str = "mongodb://localhost:27017"
    database_name: str = "storefront"
    upload_dir: Path = BASE_DIR / "uploads"
    frontend_dir: Path = BASE_DIR.parent / "frontend"
    images_dir: Path = BASE_DIR.parent / "images"
    views_dir: Path = BASE_DIR / "views"
    public_dir: Path = BASE_DIR / "public"
    log_level: str = "INFO"


def load_settings() -> Settings:
    defaults = Settings()
    return Settings(
        port=int(os.getenv("PORT", defaults.port)),
        # MONGO_URI is what older deployments set
        database_url=os.getenv("DATABASE_URL") or os.getenv("MONGO_URI") or defaults.database_url,
        database_name=os.getenv("DATABASE_NAME", defaults.database_name),
        upload_dir=Path(os.getenv("UPLOAD_DIR", defaults.upload_dir)),
        frontend_dir=Path(os.getenv("FRONTEND_DIR", defaults.frontend_dir)),
        images_dir=Path(os.getenv("IMAGES_DIR", defaults.images_dir)),
        views_dir=Path(os.getenv("VIEWS_DIR", defaults.views_dir)),
        public_dir=Path(os.getenv("PUBLIC_DIR", defaults.public_dir)),
        log_level=os.getenv("LOG_LEVEL", defaults.log_level).upper(),
    )


@lru_cache
def get_settings() -> Settings:
    load_dotenv()
    return load_settings()
