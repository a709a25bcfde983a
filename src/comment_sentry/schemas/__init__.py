"""
Pydantic schemas for API request/response models.

These schemas define the structure of API data for serialization and validation.
"""

from .review import (
    DecisionSummary,
    ReviewCommentResponse,
    ReviewResult,
    ReviewSubmit,
    SimilarCommentResponse,
)
from .suspicious import IdentifierClusterResponse, SuspiciousAccountResponse
from .system import SyncRequest, SyncTriggerResponse, SystemStatusResponse

__all__ = [
    "DecisionSummary", "ReviewCommentResponse", "ReviewResult", "ReviewSubmit",
    "SimilarCommentResponse",
    "IdentifierClusterResponse", "SuspiciousAccountResponse",
    "SyncRequest", "SyncTriggerResponse", "SystemStatusResponse",
]
