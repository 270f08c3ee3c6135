from __future__ import annotations

import argparse

import uvicorn

from app.config import get_settings


def main() -> None:
    settings = get_settings()
    parser = argparse.ArgumentParser(description="Monitoring App server")
    parser.add_argument("--host", default=settings.host, help="Bind address")
    parser.add_argument("--port", type=int, default=settings.port, help="Listening port (PORT)")
    parser.add_argument("--log-level", default=settings.log_level.lower(), help="uvicorn log level")
    args = parser.parse_args()

    # Logging is configured by the app itself; keep uvicorn from installing its own config.
    uvicorn.run("app.main:app", host=args.host, port=args.port, log_level=args.log_level, log_config=None)


if __name__ == "__main__":
    main()
