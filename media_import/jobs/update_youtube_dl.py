"""Utility to download the latest extraction tool release."""

from __future__ import annotations

import asyncio
import logging
import sys

from media_import.core.config import get_settings
from media_import.services.youtube_dl_cli import update_youtube_dl_binary


if __name__ == "__main__":
    settings = get_settings()
    logging.basicConfig(level=settings.log_level)

    if not asyncio.run(update_youtube_dl_binary(settings)):
        sys.exit(1)
    print(f"Installed {settings.youtube_dl_binary_path}.")
