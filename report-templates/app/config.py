from functools import lru_cache
from pathlib import Path

from pydantic_settings import BaseSettings

BASE_DIR = Path(__file__).resolve().parent.parent


class Settings(BaseSettings):
    backend: str = "local"  # local | supabase
    table: str = "report_templates"
    data_dir: Path = BASE_DIR / "data" / "templates"

    placeholder_content: str = "<p>Enter content here...</p>"
    image_bucket: str = "template-images"
    max_image_bytes: int = 5 * 1024 * 1024

    model_config = {
        "env_prefix": "REPORT_TEMPLATES_",
        "env_file": BASE_DIR.parent / ".env",
        "env_file_encoding": "utf-8",
        "extra": "ignore",
    }


@lru_cache
def get_settings() -> Settings:
    return Settings()
