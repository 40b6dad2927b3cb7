"""
VOLAPI Service Launcher

Starts the volumes API from the volapi/ package.

This service provides:
- Volume creation, listing, renaming and deletion
- Volume reservations for VMs being provisioned
- Volume size catalog

Usage:
    python scripts/run_volapi_service.py --host 0.0.0.0 --port 8080

Environment Variables:
    VOLAPI_API_PORT: API port (default: 8080)
    VOLAPI_BIND_HOST: Bind address (default: 0.0.0.0)
    VOLAPI_DATABASE_URL: SQLAlchemy database URL
    VOLAPI_VMAPI_URL, VOLAPI_PAPI_URL, VOLAPI_IMGAPI_URL, VOLAPI_NAPI_URL: platform APIs
    VOLAPI_LOG_LEVEL: Log level (default: INFO)
"""
import argparse
import os
import sys
from pathlib import Path

# Add project root to path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

import uvicorn

from volapi.config import load_config


def main() -> None:
    config = load_config()

    parser = argparse.ArgumentParser(description="Run the VOLAPI volumes service")
    parser.add_argument("--host", default=config.bind_host)
    parser.add_argument("--port", type=int, default=config.api_port)
    parser.add_argument("--database-url", default=os.getenv("VOLAPI_DATABASE_URL"))
    parser.add_argument("--log-level", default=config.log_level)
    args = parser.parse_args()

    print("=" * 60)
    print("VOLAPI Service")
    print("=" * 60)
    print(f"API Address: {args.host}:{args.port}")
    print(f"Database: {args.database_url or 'default'}")
    print("=" * 60)

    # Set environment variables for service startup
    os.environ["VOLAPI_API_PORT"] = str(args.port)
    os.environ["VOLAPI_BIND_HOST"] = args.host
    os.environ["VOLAPI_LOG_LEVEL"] = args.log_level
    if args.database_url:
        os.environ["VOLAPI_DATABASE_URL"] = args.database_url

    uvicorn.run("volapi.service:app", host=args.host, port=args.port, reload=False)


if __name__ == "__main__":
    main()
