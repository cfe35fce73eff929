"""
Entry point to run the FastAPI API server.

Usage:
    python -m rx_fulfillment.run
"""

import uvicorn

from rx_fulfillment.config import settings
from rx_fulfillment.log import setup_logging


def main():
    """Run the uvicorn server."""
    setup_logging()
    uvicorn.run(
        "rx_fulfillment.api:app",
        host=settings.HOST,
        port=settings.PORT,
        log_config=None,
    )


if __name__ == "__main__":
    main()
