"""Records shared by the indexer, the library store and the text cache."""

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Literal

TextKind = Literal["poem", "quote"]


def iso_timestamp(epoch: float) -> str:
    """Format an epoch time the way snapshots store it: UTC, millis, trailing Z."""
    dt = datetime.fromtimestamp(epoch, tz=timezone.utc)
    return dt.strftime("%Y-%m-%dT%H:%M:%S.") + f"{dt.microsecond // 1000:03d}Z"


@dataclass
class Photo:
    path: str
    created: str

    @property
    def created_at(self) -> datetime:
        dt = datetime.fromisoformat(self.created.replace("Z", "+00:00"))
        if dt.tzinfo is None:
            dt = dt.replace(tzinfo=timezone.utc)
        return dt

    def to_dict(self) -> dict:
        return {"path": self.path, "created": self.created}

    @classmethod
    def from_dict(cls, data: dict) -> "Photo":
        path, created = data["path"], data["created"]
        if not isinstance(path, str) or not isinstance(created, str):
            raise TypeError(f"photo record needs string path and created: {data!r}")
        return cls(path=path, created=created)


@dataclass(frozen=True)
class TextEntry:
    content: str
    kind: TextKind
    author: str | None = None

    def to_dict(self) -> dict:
        # On disk the kind is stored under "type".
        return {"content": self.content, "type": self.kind, "author": self.author}

    @classmethod
    def from_dict(cls, data: dict) -> "TextEntry":
        return cls(content=data["content"], kind=data["type"], author=data.get("author"))
