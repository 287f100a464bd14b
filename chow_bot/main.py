# Load environment variables FIRST, before any module imports that need them
from dotenv import load_dotenv
load_dotenv()

import logging
import os

from .app_factory import create_app
from .logging_config import setup_logging

# Configure logging at module load time
setup_logging()

logger = logging.getLogger(__name__)

app = create_app()


def run() -> None:
    """Run the API with uvicorn (``chow-bot`` console script)."""
    import uvicorn

    host = os.getenv("HOST", "0.0.0.0")
    port = int(os.getenv("PORT", "3000"))
    logger.info("Starting Chow Bot on %s:%d", host, port)
    uvicorn.run(app, host=host, port=port)


if __name__ == "__main__":
    run()
