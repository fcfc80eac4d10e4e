"""
Shared dependencies for API routes.
"""
from fastapi import Request

from storystudio.config import AppConfig
from storystudio.services.pipeline import StoryPipeline


def get_pipeline(request: Request) -> StoryPipeline:
    """Pipeline built once in the app lifespan (or injected by tests)."""
    return request.app.state.pipeline


def get_app_config(request: Request) -> AppConfig:
    return request.app.state.config
