"""Request and response models for the citekey bridge API.

Pydantic models validating the bibliography request body and typing the
health response.
"""

from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


class HealthStatus(str, Enum):
    """Service health status."""

    HEALTHY = "healthy"
    UNHEALTHY = "unhealthy"


class CitationGroupModel(BaseModel):
    """One citation cluster: its items and group-level properties."""

    citationItems: List[Dict[str, Any]] = Field(
        ...,
        description="Items, each naming its target with easyKey, key or citekey",
    )
    properties: Dict[str, Any] = Field(
        default_factory=dict,
        description="Group properties such as noteIndex, passed to the style engine",
    )


class BibliographyRequest(BaseModel):
    """Body of POST /bibliography."""

    styleId: Optional[str] = Field(
        default=None,
        description="Style id or URL (configured default when omitted)",
    )
    locale: Optional[str] = Field(
        default=None,
        description="Locale such as en-US (configured default when omitted)",
    )
    citationGroups: List[CitationGroupModel] = Field(
        ...,
        description="Citation clusters in document order",
    )

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "styleId": "chicago-author-date",
                "citationGroups": [
                    {
                        "citationItems": [{"easyKey": "DoeBook2005", "locator": "12"}],
                        "properties": {"noteIndex": 0},
                    }
                ],
            }
        }
    )


class HealthResponse(BaseModel):
    """Liveness probe response."""

    status: HealthStatus = Field(..., description="Overall health")
    version: str = Field(..., description="Bridge version")
    style_engines: int = Field(default=0, description="Cached style engines")
