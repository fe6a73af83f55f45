# dispatch/models.py
from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from pydantic import BaseModel, Field


@dataclass(frozen=True)
class RefUpdate:
    """An updated reference as passed to a post-receive hook by git."""
    old: str
    new: str
    name: str

    @property
    def branch(self) -> str:
        return self.name.removeprefix("refs/heads/")

    @property
    def is_deletion(self) -> bool:
        return set(self.new) == {"0"}


class DispatchConfig(BaseModel):
    """Settings of the webhook dispatcher, read from a JSON file."""
    api_url: str
    project: str
    branches: list[str] = Field(default_factory=lambda: ["refs/heads/main"])
    token_file: Optional[str] = None
    review_url: Optional[str] = None
    build_url: Optional[str] = None

    @classmethod
    def load(cls, path: str | Path) -> DispatchConfig:
        """Raises OSError or pydantic.ValidationError on a bad config."""
        return cls.model_validate_json(Path(path).read_text(encoding="utf-8"))

    def token(self) -> Optional[str]:
        if self.token_file is None:
            return None
        return Path(self.token_file).read_text(encoding="utf-8").strip()


class TriggerPayload(BaseModel):
    commit: str
    branch: str
    message: str
    author: str
