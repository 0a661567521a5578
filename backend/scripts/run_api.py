#!/usr/bin/env python3
"""
Run the punishment API server.

Usage:
    python3 scripts/run_api.py
    python3 scripts/run_api.py --port 8080 --no-reload
"""
import argparse
import os
import sys
from pathlib import Path

from dotenv import load_dotenv

backend = Path(__file__).resolve().parent.parent
load_dotenv(backend / ".env")
sys.path.insert(0, str(backend / "src"))
os.chdir(backend)

import uvicorn


def main():
    parser = argparse.ArgumentParser(description="Run the FPL punishment API")
    parser.add_argument("--host", default=os.getenv("API_HOST", "0.0.0.0"))
    parser.add_argument("--port", type=int, default=int(os.getenv("API_PORT", "8000")))
    parser.add_argument(
        "--no-reload",
        action="store_true",
        help="Disable auto-reload (on by default in development)",
    )
    args = parser.parse_args()

    reload = os.getenv("ENVIRONMENT", "development") == "development" and not args.no_reload
    uvicorn.run(
        "api.main:app",
        host=args.host,
        port=args.port,
        reload=reload,
        app_dir=str(backend / "src"),
    )


if __name__ == "__main__":
    main()
