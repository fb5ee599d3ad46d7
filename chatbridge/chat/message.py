"""Internal chat message model shared by the session and every provider."""
from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class ValidationError(ValueError):
    """Raised when a turn or a send request is invalid before any network call."""


class Role(str, Enum):
    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"


@dataclass(frozen=True)
class ChatTurn:
    """One message in the conversation.

    ``role`` accepts a :class:`Role` or its string value and is always stored
    as a :class:`Role`.  Turns are immutable; history only ever grows.
    """

    role: Role
    content: str

    def __post_init__(self) -> None:
        try:
            role = Role(self.role)
        except ValueError:
            raise ValidationError(
                f"Invalid role {self.role!r}. Choose 'system', 'user', or 'assistant'."
            ) from None
        if not isinstance(self.content, str):
            raise ValidationError(f"Turn content must be text, got {type(self.content).__name__}")
        # frozen: bypass __setattr__ to store the normalized role
        object.__setattr__(self, "role", role)

    @classmethod
    def user(cls, content: str) -> ChatTurn:
        return cls(Role.USER, content)

    @classmethod
    def assistant(cls, content: str) -> ChatTurn:
        return cls(Role.ASSISTANT, content)

    @classmethod
    def system(cls, content: str) -> ChatTurn:
        return cls(Role.SYSTEM, content)
