from __future__ import annotations

from typing import Any, Dict, List, Optional
from pydantic import BaseModel, Field


class Defaults(BaseModel):
    timeout_s: Optional[float] = Field(default=None, gt=0)


class CheckEntry(BaseModel):
    id: str = Field(..., min_length=1)
    type: str = Field(..., min_length=1)
    name: str = ""
    group: str = ""
    score_weight: float = Field(default=1.0, ge=0)
    timeout_s: Optional[float] = Field(default=None, gt=0)
    definition: Dict[str, Any] = Field(default_factory=dict)


class CheckFile(BaseModel):
    defaults: Defaults = Defaults()
    checks: List[CheckEntry]
