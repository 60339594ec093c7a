import logging

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import PlainTextResponse
from backend.app.api import routers
from backend.app.config import settings
import uvicorn

# one root configuration, every module logs through logging.getLogger(__name__)
logging.basicConfig(
    level=settings.log_level,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

# the web application instance
app = FastAPI(title=settings.app_name)

# browsers call the api from other origins
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_methods=["*"],
    allow_headers=["*"],
)

# /api/clip
app.include_router(routers.router, prefix="/api")


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    # a body that is not a JSON object is reported like any other missing field
    logger.warning("Rejected malformed request to %s: %s", request.url.path, exc.errors())
    return routers.missing_fields_response()


@app.get("/", response_class=PlainTextResponse)
async def read_root():
    return "Server is alive!"


if __name__ == "__main__":
    uvicorn.run("backend.app.main:app", host="0.0.0.0", port=settings.port)
