# webchat_bridge/api_models.py
from pydantic import BaseModel, ConfigDict, Field, field_validator
from typing import Any, Optional


def _as_optional_str(v: Any) -> Optional[str]:
    if v is None:
        return None
    return str(v)


class PasswordPayload(BaseModel):
    """Body of /api/validate-password, /api/messages and /api/purge-bot-messages."""
    password: Optional[str] = None

    @field_validator('password', mode='before')
    @classmethod
    def coerce_password(cls, v):
        return _as_optional_str(v)


class TypingPayload(PasswordPayload):
    """Body of /api/typing."""
    model_config = ConfigDict(populate_by_name=True)

    username: Optional[str] = None
    is_typing: bool = Field(False, alias="isTyping")

    @field_validator('username', mode='before')
    @classmethod
    def coerce_username(cls, v):
        return _as_optional_str(v)

    @field_validator('is_typing', mode='before')
    @classmethod
    def ensure_is_typing_is_bool(cls, v):
        return bool(v)


class ReplyTarget(BaseModel):
    """The message a web user is replying to, as the web client knows it."""
    id: Optional[str] = None
    author: str = ""
    content: str = ""
    timestamp: Optional[str] = None

    @field_validator('id', 'timestamp', mode='before')
    @classmethod
    def coerce_optional(cls, v):
        return _as_optional_str(v)

    @field_validator('author', 'content', mode='before')
    @classmethod
    def ensure_str(cls, v):
        if v is None:
            return ""
        return str(v)


class SendPayload(PasswordPayload):
    """Body of /api/send."""
    model_config = ConfigDict(populate_by_name=True)

    message: str = ""
    username: Optional[str] = None
    reply_to: Optional[ReplyTarget] = Field(None, alias="replyTo")

    @field_validator('message', mode='before')
    @classmethod
    def ensure_message_is_str(cls, v):
        if v is None:
            return ""
        return str(v)

    @field_validator('username', mode='before')
    @classmethod
    def coerce_username(cls, v):
        return _as_optional_str(v)
