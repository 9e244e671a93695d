import logging

from fastapi import APIRouter, Depends
from fastapi.responses import Response

from kira.config import settings
from kira.dependencies import get_pipeline
from kira.errors import InvalidInputError
from kira.schemas import Artifact
from kira.services.pipeline import ActivityPipeline

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["graph"])


def _artifact_response(artifact: Artifact) -> Response:
    return Response(
        content=artifact.data,
        media_type=artifact.media_type,
        headers={
            "Cache-Control": f"public, max-age={settings.CACHE_TTL_SECONDS}",
            # lets clients detect a static fallback of an animated request
            "X-Artifact-Kind": artifact.kind.value,
            "X-Frame-Count": str(artifact.frame_count),
        },
    )


@router.get("/graph")
async def graph(
    user: str | None = None,
    source: str = "github",
    style: str = "deathnote",
    size: str = "medium",
    pipeline: ActivityPipeline = Depends(get_pipeline),
) -> Response:
    """Animated WebP walking through all four analysis steps."""
    artifact = await pipeline.render_sequence(user or "", source, style, size)
    return _artifact_response(artifact)


@router.get("/frame")
async def frame(
    user: str | None = None,
    source: str = "github",
    step: str = "4",
    style: str = "deathnote",
    pipeline: ActivityPipeline = Depends(get_pipeline),
) -> Response:
    """Still WebP of a single step."""
    try:
        step_num = int(step)
    except ValueError:
        raise InvalidInputError("Step must be between 1 and 4") from None
    artifact = await pipeline.render_single(user or "", source, step_num, style)
    return _artifact_response(artifact)
