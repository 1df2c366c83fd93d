#!/usr/bin/env python3
"""
Startup script for the Pin Search & Recommendations API.
"""

import logging
import sys
from pathlib import Path

import uvicorn

# Add src to path
src_path = Path(__file__).parent / "src"
sys.path.insert(0, str(src_path))

from config import AppConfig  # noqa: E402

if __name__ == "__main__":
    config = AppConfig.from_env()
    logging.basicConfig(
        level=config.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    logging.getLogger(__name__).info(
        "Starting pin search API on http://%s:%d (docs at /docs, health at /health)", config.host, config.port
    )

    uvicorn.run(
        "api.app:app",
        host=config.host,
        port=config.port,
        log_level=config.log_level,
    )
