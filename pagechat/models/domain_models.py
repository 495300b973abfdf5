from dataclasses import dataclass
from typing import Literal

Role = Literal["system", "user", "assistant"]


@dataclass(frozen=True)
class Message:
    role: Role
    content: str

    def to_dict(self) -> dict:
        return {"role": self.role, "content": self.content}


# Ordered and immutable; built once per request.
Conversation = tuple[Message, ...]


@dataclass(frozen=True)
class PageContext:
    title: str
    url: str
    text: str


@dataclass(frozen=True)
class HistoryItem:
    type: Literal["user", "assistant"]
    content: str
