#!/usr/bin/env python3
"""Run the Chant tournament engine API.

Usage:
    python run.py [--host HOST] [--port PORT] [--reload] [--workers N]
"""

import argparse

import uvicorn


def main():
    parser = argparse.ArgumentParser(description="Run the Chant tournament engine API")
    parser.add_argument("--host", default="127.0.0.1", help="Host to bind to (default: 127.0.0.1)")
    parser.add_argument("--port", type=int, default=8000, help="Port to bind to (default: 8000)")
    parser.add_argument(
        "--reload",
        action="store_true",
        help="Enable auto-reload on code changes (development mode)",
    )
    parser.add_argument(
        "--workers",
        type=int,
        default=1,
        help="Number of worker processes (default: 1)",
    )
    parser.add_argument(
        "--log-level",
        choices=["debug", "info", "warning", "error", "critical"],
        default="info",
        help="Logging level (default: info)",
    )
    args = parser.parse_args()

    # Each worker runs its own timer scheduler; the sweeps are idempotent.
    uvicorn.run(
        "chant.main:app",
        host=args.host,
        port=args.port,
        reload=args.reload,
        workers=args.workers if not args.reload else 1,
        log_level=args.log_level,
    )


if __name__ == "__main__":
    main()
