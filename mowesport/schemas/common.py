"""
Response envelope shared by every endpoint.

Success bodies are {"success": true, "data": ...}; errors are rendered by
the exception handlers in mowesport.exceptions.
"""

from typing import Generic, TypeVar

from pydantic import BaseModel

DataT = TypeVar("DataT")


class SuccessResponse(BaseModel, Generic[DataT]):
    success: bool = True
    data: DataT


class MessageData(BaseModel):
    message: str


