"""Aleph Engine — server launcher."""

import argparse
import os
from pathlib import Path

import uvicorn

from aleph_engine.config import load_config, setup_logging


def main():
    config = load_config()

    parser = argparse.ArgumentParser(description="Aleph Engine server")
    parser.add_argument("--data-dir", type=Path, default=None,
                        help="Preference storage directory (default: ./data)")
    parser.add_argument("--host", default=config.host)
    parser.add_argument("--port", type=int, default=config.port)
    parser.add_argument("--reload", action="store_true",
                        help="Restart the server on code changes")
    args = parser.parse_args()

    # The app factory reads its config from the environment; hand the
    # data dir over the same way.
    if args.data_dir:
        os.environ["DATA_DIR"] = str(args.data_dir.resolve())

    setup_logging(config.log_level)
    print(f"Starting Aleph Engine on http://localhost:{args.port} ...")
    uvicorn.run(
        "aleph_engine.app:create_app",
        factory=True,
        host=args.host,
        port=args.port,
        reload=args.reload,
        log_config=None,
    )


if __name__ == "__main__":
    main()
