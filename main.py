"""Better DM — dev launcher. Starts the API server in watch mode."""

import argparse
import os
from pathlib import Path

import uvicorn
from dotenv import load_dotenv

ROOT = Path(__file__).parent
load_dotenv(ROOT / ".env")

HOST = os.getenv("HOST", "0.0.0.0")
PORT = int(os.getenv("PORT", "13013"))


def main():
    parser = argparse.ArgumentParser(description="Better DM dev launcher")
    parser.add_argument("--data-dir", type=Path, default=None,
                        help="Data storage directory (default: ./data)")
    parser.add_argument("--demo", action="store_true",
                        help="Clean and create demo campaign data")
    parser.add_argument("--log-level", default="info",
                        help="Log level passed to uvicorn (default: info)")
    args = parser.parse_args()

    # Handle --demo: init storage and populate, then continue to dev server
    if args.demo or args.data_dir:
        from backend import sessions
        data_dir = args.data_dir or Path("data")
        sessions.init_sessions(data_dir)
        if args.demo:
            from backend.demo import create_demo_data
            create_demo_data()

    # The reloader imports backend.app in a subprocess; pass the data dir along
    if args.data_dir:
        os.environ["DATA_DIR"] = str(args.data_dir.resolve())

    print(f"Starting backend on http://localhost:{PORT} ...")
    uvicorn.run("backend.app:app", host=HOST, port=PORT, reload=True, log_level=args.log_level)


if __name__ == "__main__":
    main()
