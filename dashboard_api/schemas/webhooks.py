"""Pydantic schemas for automation webhook calls."""

from typing import Any

from pydantic import BaseModel, Field


class WebhookPing(BaseModel):
    """Connectivity check sent by the automation workflow."""

    event: str | None = Field(
        None,
        description="Optional event name, echoed back in the acknowledgement.",
        max_length=200,
    )
    metadata: dict[str, Any] = Field(default_factory=dict)


class WebhookAck(BaseModel):
    received: bool = True
    event: str | None = None
