from __future__ import annotations

import json
from typing import Any, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from travelbook_auth.storage.kv import SUPPORTED_COMMANDS


class CommandRequest(BaseModel):
    """Body of ``POST /api/upstash/{command}``."""

    model_config = ConfigDict(extra="ignore")

    command: str = Field(..., min_length=1, max_length=16)
    args: List[str] = Field(..., max_length=64)

    @field_validator("command")
    @classmethod
    def _normalize_command(cls, value: str) -> str:
        return value.strip().lower()

    @field_validator("args", mode="before")
    @classmethod
    def _stringify_args(cls, value: Any) -> Any:
        if not isinstance(value, list):
            return value
        args = []
        for item in value:
            if isinstance(item, str):
                args.append(item)
            elif isinstance(item, bool) or item is None:
                raise ValueError("args must be strings or numbers")
            elif isinstance(item, (int, float)):
                args.append(str(item))
            else:
                args.append(json.dumps(item))
        return args

    @model_validator(mode="after")
    def _check_arity(self) -> "CommandRequest":
        if self.command in SUPPORTED_COMMANDS and not self.args:
            raise ValueError("args must name at least a key")
        return self


class CommandResponse(BaseModel):
    """Uniform proxy envelope: ``result`` on success, ``message`` on failure."""

    success: bool
    result: Optional[Any] = None
    message: Optional[str] = None

    def to_content(self) -> dict:
        if self.success:
            return {"success": True, "result": self.result}
        return {"success": False, "message": self.message or "Internal server error"}
