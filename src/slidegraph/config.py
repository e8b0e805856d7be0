"""Configuration loaded from environment variables."""

from __future__ import annotations

import os
from pathlib import Path

from dotenv import load_dotenv

load_dotenv()


# Paths
DATA_DIR: Path = Path(os.getenv("DATA_DIR", "./data"))

# API keys
GEMINI_API_KEY: str = os.getenv("GEMINI_API_KEY", "")
BRAVE_SEARCH_API_KEY: str = os.getenv("BRAVE_SEARCH_API_KEY", "")

# Models
GEMINI_MODEL: str = os.getenv("GEMINI_MODEL", "gemini-3-flash-preview")
CHAT_MODEL: str = os.getenv("CHAT_MODEL", GEMINI_MODEL)
MAX_OUTPUT_TOKENS: int = int(os.getenv("MAX_OUTPUT_TOKENS", "16384"))

# Transport timeouts
MODEL_TIMEOUT_MS: int = int(os.getenv("MODEL_TIMEOUT_MS", "120000"))
SEARCH_TIMEOUT_SECS: float = float(os.getenv("SEARCH_TIMEOUT_SECS", "10"))

# Pre-generation
PREGEN_WORKERS: int = int(os.getenv("PREGEN_WORKERS", "4"))

# Server
HOST: str = os.getenv("HOST", "0.0.0.0")
PORT: int = int(os.getenv("PORT", "8000"))
LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO").upper()
API_BASE_URL: str = os.getenv("API_BASE_URL", f"http://localhost:{PORT}")

# Derived paths
SQLITE_PATH: Path = DATA_DIR / "slidegraph.db"
