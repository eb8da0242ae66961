from os import getenv
from pathlib import Path

# Directory for generated images
EXPORT_FOLDER = Path.cwd() / "exports"
"""Directory for generated images"""
EXPORT_FOLDER.mkdir(
    parents=True,
    exist_ok=True,
)

# Base URL of the Stable Diffusion web UI that renders the images.
SD_API_URL = getenv("JINX_SD_URL", "http://localhost:7861")
"""Base URL of the Stable Diffusion web UI"""

_sd_timeout = getenv("JINX_SD_TIMEOUT")
SD_TIMEOUT = float(_sd_timeout) if _sd_timeout else None
"""Seconds allowed for one txt2img request, None waits forever"""

LOG_LEVEL = getenv("JINX_LOG_LEVEL", "INFO").upper()

EXPORT_EXTENSION = ".png"
TEXT_MAX_LENGTH = 2000


__all__ = [
    "EXPORT_EXTENSION",
    "EXPORT_FOLDER",
    "LOG_LEVEL",
    "SD_API_URL",
    "SD_TIMEOUT",
    "TEXT_MAX_LENGTH",
]
