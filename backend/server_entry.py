"""Server entry point: launches the analytics API with uvicorn.

Usage:
    python server_entry.py --port 8000
"""

import argparse


def main() -> None:
    parser = argparse.ArgumentParser(description="Chapturs Analytics API")
    parser.add_argument("--port", type=int, default=8000, help="HTTP port")
    parser.add_argument("--host", type=str, default="127.0.0.1", help="bind address")
    args = parser.parse_args()

    import uvicorn

    uvicorn.run(
        "chapturs_analytics.api.main:app",
        host=args.host,
        port=args.port,
        log_level="info",
    )


if __name__ == "__main__":
    main()
