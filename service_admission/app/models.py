"""
Data models for the Admission Service.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import FrozenSet, List, Optional

from pydantic import BaseModel, ConfigDict, Field


class OAuthToken(BaseModel):
    """Client-credentials grant response."""

    access_token: str = Field(..., min_length=1)
    token_type: str = "Bearer"
    expires_in: int = 0


class Device(BaseModel):
    """Device record from the directory API. Only the node key is consumed."""

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    node_key: Optional[str] = Field(default=None, alias="nodeKey")


class DevicesResponse(BaseModel):
    devices: List[Device] = Field(default_factory=list)


class AdmissionRequest(BaseModel):
    """DERP admit-client request body."""

    model_config = ConfigDict(populate_by_name=True)

    node_public: str = Field(..., min_length=1, alias="NodePublic")
    source: str = Field(..., min_length=1, alias="Source")


class AdmissionVerdict(BaseModel):
    """DERP admit-client response body."""

    model_config = ConfigDict(populate_by_name=True)

    allow: bool = Field(default=False, alias="Allow")


@dataclass(frozen=True)
class CacheRecord:
    """Snapshot of the persisted admission cache."""
    sync_time: Optional[datetime] = None
    authorized_keys: FrozenSet[str] = field(default_factory=frozenset)
