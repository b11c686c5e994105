"""Internal chat models."""

from __future__ import annotations

from enum import Enum
from typing import Literal, Union

from pydantic import BaseModel, ConfigDict, Field

from virtualchef.core.cancellation import AbortSignal


class TextBlock(BaseModel):
    model_config = ConfigDict(frozen=True)

    type: Literal["text"] = "text"
    text: str


class ConversationMessage(BaseModel):
    model_config = ConfigDict(frozen=True)

    role: Literal["user", "assistant", "system"]
    content: Union[str, tuple[TextBlock, ...]]

    def text(self) -> str:
        if isinstance(self.content, str):
            return self.content
        return "".join(block.text for block in self.content)

    def to_provider_dict(self) -> dict:
        if isinstance(self.content, str):
            return {"role": self.role, "content": self.content}
        return {"role": self.role, "content": [block.model_dump() for block in self.content]}


class GenerationRequest(BaseModel):
    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    system_prompt: str
    messages: tuple[ConversationMessage, ...] = Field(min_length=1)
    temperature: float = Field(ge=0.0, le=1.0)
    max_output_tokens: int = Field(gt=0)
    cancellation_signal: AbortSignal


class RelayOutcome(str, Enum):
    STREAMED_OK = "streamed_ok"
    UPSTREAM_UNAVAILABLE = "upstream_unavailable"
    BAD_INPUT = "bad_input"
    CLIENT_ABORTED = "client_aborted"
    UPSTREAM_ERROR = "upstream_error"
