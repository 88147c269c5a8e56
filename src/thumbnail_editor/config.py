"""
Configuration - Environment settings for the thumbnail editor.

Values come from the process environment, with a .env file in the working
directory loaded first. Every setting has a default except the Gemini key,
which is only required once a client is actually built.
"""

import os
from pathlib import Path
from dotenv import load_dotenv

load_dotenv()

# Gemini API
GEMINI_API_KEY = os.getenv("GEMINI_API_KEY") or os.getenv("API_KEY")
ANALYSIS_MODEL = os.getenv("THUMBNAIL_ANALYSIS_MODEL", "gemini-3-flash-preview")
IMAGE_MODEL = os.getenv("THUMBNAIL_IMAGE_MODEL", "gemini-2.5-flash-image")
IMAGE_SIZE = os.getenv("THUMBNAIL_IMAGE_SIZE", "1K")
ASPECT_RATIO = "16:9"
RETRY_COUNT = int(os.getenv("THUMBNAIL_RETRY_COUNT", "3"))
RETRY_WAIT_SECONDS = float(os.getenv("THUMBNAIL_RETRY_WAIT", "30"))

# Image processing
DECODE_TIMEOUT = float(os.getenv("THUMBNAIL_DECODE_TIMEOUT", "10"))

# Session persistence (roughly a browser's local storage quota)
SESSION_MAX_BYTES = int(os.getenv("THUMBNAIL_SESSION_MAX_BYTES", str(5 * 1024 * 1024)))

# Paths
BASE_DIR = Path.cwd()
DATA_DIR = Path(os.getenv("THUMBNAIL_DATA_DIR", str(BASE_DIR / "data")))
SESSION_PATH = DATA_DIR / "session.json"
OUTPUT_DIR = DATA_DIR / "output"
