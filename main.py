"""Dungeon Master AI — launcher. Serves the API (and built frontend) with uvicorn."""

import argparse
import logging
import os
from pathlib import Path

import uvicorn

from dungeon_master.config import load_settings


def main():
    settings = load_settings()

    parser = argparse.ArgumentParser(description="Dungeon Master AI launcher")
    parser.add_argument("--data-dir", type=Path, default=None,
                        help="Key-value store directory (default: ./data)")
    parser.add_argument("--host", default=settings.host)
    parser.add_argument("--port", type=int, default=settings.port)
    parser.add_argument("--log-level", default="info",
                        choices=["debug", "info", "warning", "error"])
    parser.add_argument("--reload", action="store_true",
                        help="Restart on code changes")
    args = parser.parse_args()

    logging.basicConfig(
        level=args.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    # The app factory re-reads settings from the environment, also under --reload
    if args.data_dir:
        os.environ["DATA_DIR"] = str(args.data_dir.resolve())
    if settings.provider == "gemini" and not settings.api_key:
        print("Warning: GEMINI_API_KEY is not set; joining a game will fail until it is.")

    print(f"Starting Dungeon Master AI on http://{args.host}:{args.port} ...")
    uvicorn.run(
        "dungeon_master.app:create_app",
        factory=True,
        host=args.host,
        port=args.port,
        reload=args.reload,
        log_level=args.log_level,
    )


if __name__ == "__main__":
    main()
