from __future__ import annotations

from typing import List

from pydantic import BaseModel, Field


class OnlineResp(BaseModel):
    online: int = Field(..., ge=0)


class WebsocketUrlResp(BaseModel):
    url: str = Field(..., min_length=1)


class MeReq(BaseModel):
    fingerprint: str = Field(..., min_length=1)


class MeResp(BaseModel):
    id: str = ""
    name: str = ""
    center: List[int] = Field(default_factory=list)
    waitSeconds: float = Field(0.0, description="Seconds until the next pixel may be placed")
