"""
ERP Access Core - Development Server

Usage:
    python -m scripts.serve --port 8000 --reload
"""

import argparse
import sys
from pathlib import Path

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

import uvicorn


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description="Run the ERP access API")
    parser.add_argument("--host", default="127.0.0.1")
    parser.add_argument("--port", type=int, default=8000)
    parser.add_argument("--reload", action="store_true", help="Auto-reload on code changes")
    args = parser.parse_args(argv)

    uvicorn.run("erp_auth.app:app", host=args.host, port=args.port, reload=args.reload)
    return 0


if __name__ == "__main__":
    sys.exit(main())
