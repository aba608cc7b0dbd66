"""
Starts the Energy Billing service with uvicorn.
"""

import logging

import uvicorn

from main import configure_logging

logger = logging.getLogger(__name__)

if __name__ == "__main__":
    configure_logging()
    logger.info("[OK] Energy Billing on http://localhost:8000 (API docs at /docs)")
    uvicorn.run("main:app", host="0.0.0.0", port=8000, reload=False)
