from fastapi import Request

from kira.services.cache import ResultCache
from kira.services.pipeline import ActivityPipeline


def get_pipeline(request: Request) -> ActivityPipeline:
    return request.app.state.pipeline


def get_cache(request: Request) -> ResultCache:
    return request.app.state.cache
