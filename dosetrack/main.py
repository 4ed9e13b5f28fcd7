"""
dosetrack API entrypoint.

    uvicorn dosetrack.main:app --host 0.0.0.0 --port 8000
"""

import logging

from fastapi import FastAPI

from dosetrack.api.routes import router
from dosetrack.config import LOG_LEVEL


def create_app() -> FastAPI:
    logging.basicConfig(
        level=LOG_LEVEL,
        format="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
    )
    app = FastAPI(title="dosetrack", version="1.0.0")
    app.include_router(router)
    logging.getLogger("dosetrack").debug("Routes registered: %d", len(app.routes))
    return app


app = create_app()
