"""
Main entry point for the responses-chat server.

Serves the relay endpoint, the model catalog and the WebSocket chat session.
Can be called with: python -m responses_chat
"""

import argparse
import logging
import os

import uvicorn

from .app import app


def main():
    """Main entry point for the responses-chat server."""
    parser = argparse.ArgumentParser(
        description="responses-chat - streaming chat over the Responses API"
    )
    parser.add_argument(
        "--host",
        default="0.0.0.0",
        help="Interface to bind (default: 0.0.0.0)",
    )
    parser.add_argument(
        "--port",
        type=int,
        default=8000,
        help="Port to run the server on (default: 8000)",
    )
    parser.add_argument(
        "--log-level",
        default=os.environ.get("LOG_LEVEL", "INFO"),
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Log level (default: INFO, or $LOG_LEVEL)",
    )
    args = parser.parse_args()

    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    logger = logging.getLogger(__name__)
    logger.info("Starting chat server...")
    logger.info(f"Relay endpoint: http://localhost:{args.port}/api/turn_response")
    logger.info(f"Chat WebSocket: ws://localhost:{args.port}/ws")

    uvicorn.run(app, host=args.host, port=args.port, log_level=args.log_level.lower())


if __name__ == "__main__":
    main()
