"""API layer for the citekey bridge.

Pydantic models for the HTTP interface; the application factory lives in
``citekey_bridge.api.app``.
"""

from .models import (
    BibliographyRequest,
    CitationGroupModel,
    HealthResponse,
    HealthStatus,
)

__all__ = [
    "BibliographyRequest",
    "CitationGroupModel",
    "HealthResponse",
    "HealthStatus",
]
