"""Gateway services."""

from kmsgate.services.signing_service import (
    PipelineRun,
    PipelineStage,
    SigningResult,
    SigningService,
    get_signing_service,
)

__all__ = [
    "PipelineRun",
    "PipelineStage",
    "SigningResult",
    "SigningService",
    "get_signing_service",
]
