"""
Application-wide settings and environment configuration
"""

from __future__ import annotations

import os
from pathlib import Path

from dotenv import load_dotenv

# Load environment variables from .env file before anything reads them
load_dotenv()

# Project paths
SHIPSYNC_ROOT = Path(__file__).parent.parent

# Environment
ENV = os.getenv("SHIPSYNC_ENV", "development")

# API Configuration
API_HOST = os.getenv("API_HOST", "0.0.0.0")
API_PORT = int(os.getenv("PORT", "3000"))

# Store connection (path to the SQLite database file)
DEFAULT_DB_PATH = SHIPSYNC_ROOT / "data" / "shipsync.db"

# Origins allowed to call the JSON API from the storefront widget
ALLOWED_ORIGINS = [
    origin.strip()
    for origin in os.getenv("SHIPSYNC_ALLOWED_ORIGINS", "*").split(",")
    if origin.strip()
]

