from __future__ import annotations
import os
from dotenv import load_dotenv

load_dotenv()

DEFAULT_MODEL = os.getenv("EXAMPREP_MODEL", "gpt-4o-mini")
DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///data/examprep.db")

GENERATION_CONCURRENCY = int(os.getenv("GENERATION_CONCURRENCY", "8"))
MAX_BATCH_COUNT = int(os.getenv("MAX_BATCH_COUNT", "20"))
PDF_MAX_PAGES = int(os.getenv("PDF_MAX_PAGES", "30"))
PAPER_TEXT_CHAR_LIMIT = int(os.getenv("PAPER_TEXT_CHAR_LIMIT", "20000"))
MAX_HINTS = 2


def get_azure_settings() -> dict | None:
    endpoint = os.getenv("AZURE_OPENAI_ENDPOINT")
    if not endpoint:
        return None
    return {
        "azure_endpoint": endpoint,
        "azure_deployment": os.getenv("AZURE_OPENAI_DEPLOYMENT", DEFAULT_MODEL),
        "api_version": os.getenv("AZURE_OPENAI_API_VERSION", "2024-06-01"),
    }


def get_openai_key() -> str | None:
    # Azure deployments carry their own key
    if get_azure_settings():
        return os.getenv("AZURE_OPENAI_API_KEY") or os.getenv("OPENAI_API_KEY")
    return os.getenv("OPENAI_API_KEY")
