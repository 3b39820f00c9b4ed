# api/__init__.py
from __future__ import annotations

from fastapi import FastAPI

from gs_platform.engine import Engine

from .templatesAPI import build_router as build_templates_router

__all__ = [
    "build_templates_router",
    "register",
]


def register(app: FastAPI, engine: Engine) -> None:
    app.include_router(build_templates_router(engine))
