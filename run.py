#!/usr/bin/env python3
"""
P2P Lending Service Entry Point

Starts the FastAPI server with the loan lifecycle API.
"""

import argparse
import sys

from p2p_lending.api import run_server
from p2p_lending.config import get_config


def main(argv=None) -> int:
    config = get_config()
    parser = argparse.ArgumentParser(description="Run the P2P lending API")
    parser.add_argument("--host", default=config.api_host)
    parser.add_argument("--port", type=int, default=config.api_port)
    parser.add_argument("--reload", action="store_true", help="Reload on code changes")
    args = parser.parse_args(argv)
    
    print(f"Starting P2P Lending Service on http://{args.host}:{args.port}")
    print(f"Storage backend: {config.storage_backend}")
    print(f"Documentation at: http://{args.host}:{args.port}/docs")
    
    try:
        run_server(host=args.host, port=args.port, reload=args.reload)
    except KeyboardInterrupt:
        print("\nShutting down P2P Lending Service...")
    return 0


if __name__ == "__main__":
    sys.exit(main())
