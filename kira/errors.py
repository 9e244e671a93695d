"""
Error taxonomy for the activity pipeline.
Each error carries the HTTP status the front door answers with.
"""


class ActivityError(Exception):
    status_code = 500

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class InvalidInputError(ActivityError):
    """Out-of-range step, unknown source tag, missing identity."""

    status_code = 400


class NotFoundError(ActivityError):
    """Identity is unknown at the source."""

    status_code = 404


class UpstreamError(ActivityError):
    """Source was reachable but answered with an error or an unexpected shape."""

    status_code = 502


class RenderError(ActivityError):
    """Template injection, settle or snapshot failed for one job."""

    status_code = 500


class InfrastructureError(ActivityError):
    """Rendering engine could not be started or restarted."""

    status_code = 503
