"""CORS middleware configuration."""

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from meza.config import Settings


def setup_cors(app: FastAPI, settings: Settings) -> None:
    """Allow the web and mobile client origins to call the API with bearer tokens."""
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
        allow_headers=["Authorization", "Content-Type", "X-Request-Id"],
        # Content-Disposition carries the file name of data exports.
        expose_headers=["X-Request-Id", "X-RateLimit-Remaining", "X-RateLimit-Limit", "Content-Disposition"],
    )
