#!/usr/bin/env python3
"""Wrapper script to start the FastAPI server with proper import paths"""

import logging
import os
import sys

# Add the repository root to path so "metrotex" imports resolve
package_dir = os.path.dirname(os.path.abspath(__file__))
parent_dir = os.path.dirname(package_dir)
if parent_dir not in sys.path:
    sys.path.insert(0, parent_dir)

import uvicorn

from metrotex.config import get_settings


def main():
    settings = get_settings()
    logging.basicConfig(
        level=settings.log_level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    print(f"[MetroTex] Starting backend server on http://{settings.host}:{settings.port}...")
    print(f"[MetroTex] Chat provider: {settings.chat.provider.value}")
    uvicorn.run("metrotex.main:app", host=settings.host, port=settings.port, reload=False)


if __name__ == "__main__":
    main()
