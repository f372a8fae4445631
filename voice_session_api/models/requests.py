"""Request models for API endpoints."""

from pydantic import BaseModel, Field, field_validator

from .session import ConversationMode


class SessionStartRequest(BaseModel):
    """Request to start (or toggle) a live conversation with an agent."""

    agent_id: str | None = Field(
        default=None,
        description="Agent to talk to (defaults to ELEVENLABS_AGENT_ID)",
        examples=["agent_2601ka9xkvjge6vswgmh8av21061"],
    )
    dynamic_variables: dict[str, str] = Field(
        default_factory=dict,
        description="Variables passed to the agent; override values from the user profile",
        examples=[{"firstname": "Sam"}],
    )
    mode: ConversationMode = Field(
        default=ConversationMode.TALK, description="talk (voice) or chat (text only)"
    )
    microphone_granted: bool = Field(
        default=True,
        description="Whether the client was granted microphone access",
    )

    @field_validator("dynamic_variables")
    @classmethod
    def validate_variable_names(cls, v: dict[str, str]) -> dict[str, str]:
        """Reject blank variable names."""
        for key in v:
            if not key.strip():
                raise ValueError("dynamic variable names must not be blank")
        return v


class MessageRequest(BaseModel):
    """Request to send a text message into the live session."""

    message: str = Field(..., description="User message content", min_length=1)
