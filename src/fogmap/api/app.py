# src/fogmap/api/app.py
"""
FastAPI application wiring.

This file creates the `FastAPI` instance and attaches CORS. Handlers live in
`fogmap.api.routes`; geometry logic lives in `fogmap.storage` and `fogmap.geometry`.
"""

from __future__ import annotations

import os

from fastapi import FastAPI
from starlette.middleware.cors import CORSMiddleware

from fogmap.config.settings import get_settings
from fogmap.core.logging import configure_logging

from .routes import router

configure_logging()

app = FastAPI(title="FogMap API", version="0.1.0")

# Origins come from settings (`api.cors_origins`) plus FOGMAP_CORS_ORIGINS="http://a,http://b".
cors_origins = list(get_settings().api.cors_origins)
cors_origins += [s.strip() for s in os.getenv("FOGMAP_CORS_ORIGINS", "").split(",") if s.strip()]
if cors_origins:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=cors_origins,
        allow_credentials=False,
        allow_methods=["*"],
        allow_headers=["*"],
    )

app.include_router(router)
