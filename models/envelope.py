"""
API Response Envelope

Uniform JSON body returned by every endpoint, success or failure.
"""

from typing import Any, Optional
from pydantic import BaseModel, ConfigDict, Field


class ApiResponse(BaseModel):
    """
    Response envelope.

    `data` is omitted from the serialized body unless it was provided.
    `requestId` is a per-request correlation identifier for logs only.
    """
    model_config = ConfigDict(populate_by_name=True)

    success: bool
    code: str
    message: str
    retryable: bool = False
    data: Optional[Any] = None
    request_id: str = Field(alias="requestId")

    def to_body(self) -> dict:
        """Serialize with camelCase keys, dropping `data` when it was never set."""
        return self.model_dump(mode="json", by_alias=True, exclude_unset=True)
