"""Pydantic models describing request and response payloads."""
from __future__ import annotations

from typing import Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field


class ChatMessage(BaseModel):
    """One role/content pair as sent to the chat function."""

    role: Literal["user", "assistant", "system"]
    content: Union[str, List[Dict[str, Any]]]


class ChatRequest(BaseModel):
    """Body of ``POST /chat`` for both streamed text and one-shot image turns."""

    model_config = ConfigDict(populate_by_name=True)

    messages: List[ChatMessage] = Field(default_factory=list)
    type: Literal["text", "image", "tool"] = "text"
    image_prompt: Optional[str] = Field(default=None, alias="imagePrompt")

    def to_wire(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)


class ImageReply(BaseModel):
    """Non-streamed answer of an image turn."""

    content: str
    image: Optional[str] = None
    type: Literal["image"] = "image"


class ErrorBody(BaseModel):
    error: str


class ClientSecret(BaseModel):
    value: Optional[str] = None
    expires_at: Optional[int] = None


class RealtimeCredential(BaseModel):
    """Response of the credential function; only ``client_secret.value`` matters."""

    model_config = ConfigDict(extra="allow")

    client_secret: Optional[ClientSecret] = None

    @property
    def secret(self) -> Optional[str]:
        if self.client_secret is None:
            return None
        value = (self.client_secret.value or "").strip()
        return value or None


class VoiceToTextRequest(BaseModel):
    audio: str = Field(..., description="Base64-encoded recorded audio")


class VoiceToTextResponse(BaseModel):
    text: str = ""
