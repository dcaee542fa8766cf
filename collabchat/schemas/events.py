from typing import Any, Literal

from pydantic import BaseModel


class TransportFrame(BaseModel):
    type: str  # 'joinRoom', 'leaveRoom', 'receiveMessage', 'messageUpdated'
    data: Any = None


class Notice(BaseModel):
    """User-visible notice raised when a request fails."""

    title: str
    description: str
    variant: Literal["default", "destructive"] = "destructive"
