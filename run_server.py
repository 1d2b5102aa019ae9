#!/usr/bin/env python3
"""
Launch script for the Drone Flight Telemetry Backend.

Usage:
    python run_server.py [data_folder] [--port PORT] [--host HOST]

Examples:
    python run_server.py                     # Use default ./data/flights folder
    python run_server.py /path/to/logs       # Use custom folder
    python run_server.py --port 5000         # Run on port 5000
    python run_server.py --ground-elevation 120
"""

import argparse
import os
from pathlib import Path


def main():
    parser = argparse.ArgumentParser(description="Drone Flight Telemetry Backend Server")
    parser.add_argument(
        "data_folder",
        nargs="?",
        default="./data/flights",
        help="Path to folder containing CSV flight logs (default: ./data/flights)"
    )
    parser.add_argument(
        "--port", "-p",
        type=int,
        default=8000,
        help="Port to run server on (default: 8000)"
    )
    parser.add_argument(
        "--host", "-H",
        default="127.0.0.1",
        help="Host to bind to (default: 127.0.0.1, use 0.0.0.0 for all interfaces)"
    )
    parser.add_argument(
        "--ground-elevation", "-g",
        type=float,
        default=None,
        help="Flat terrain elevation in meters, used when no DEM is available"
    )
    parser.add_argument(
        "--debug", "-d",
        action="store_true",
        help="Run in debug mode"
    )

    args = parser.parse_args()

    data_folder = Path(args.data_folder)

    print("Drone Flight Telemetry Backend")
    print("=" * 40)
    print(f"Data folder: {data_folder.absolute()}")
    print(f"Server: http://{args.host}:{args.port}")
    print("=" * 40)

    if not data_folder.exists():
        print(f"\nWarning: Data folder does not exist: {data_folder}")
        print("You can set it later via POST /folder")

    # Configure data folder for FastAPI lifespan
    if data_folder.exists():
        os.environ["DRONEFLIGHT_DATA_FOLDER"] = str(data_folder)
    if args.ground_elevation is not None:
        os.environ["DRONEFLIGHT_GROUND_ELEVATION_M"] = str(args.ground_elevation)
    if args.debug:
        os.environ["DRONEFLIGHT_LOG_LEVEL"] = "DEBUG"

    print("\nAPI Endpoints:")
    print("  GET  /                             - Health check")
    print("  GET  /health                       - Detailed health")
    print("  GET  /folder                       - Current folder info")
    print("  POST /folder                       - Set data folder")
    print("  GET  /flights                      - List all flights")
    print("  GET  /flights/{id}                 - Flight legs and statistics")
    print("  GET  /flights/{id}/steps           - Steps and footprints")
    print("  GET  /flights/{id}/coverage        - Ground swathe over a time range")
    print("  GET  /flights/{id}/locate          - Ground location of an image point")
    print("  POST /flights/{id}/ground-reference - Re-process with a ground reference")
    print("\nStarting server...")

    import uvicorn

    uvicorn.run(
        "droneflight.main:app",
        host=args.host,
        port=args.port,
        reload=args.debug,
        log_level="debug" if args.debug else "info",
    )


if __name__ == "__main__":
    main()
