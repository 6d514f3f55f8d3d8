"""
Provider Response Models
========================
Pydantic models for the Auth API JSON envelope.
"""

from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field


class ResponseEnvelope(BaseModel):
    """Outer ``{"stat": ..., "response": ...}`` wrapper."""
    model_config = ConfigDict(extra="allow")

    stat: str
    response: Optional[Union[Dict[str, Any], int, str]] = None
    code: Optional[int] = None
    message: Optional[str] = None
    message_detail: Optional[str] = None


class Device(BaseModel):
    model_config = ConfigDict(extra="allow")

    device: str
    type: Optional[str] = None
    capabilities: List[str] = Field(default_factory=list)


class ProviderResponse(BaseModel):
    """Parsed ``response`` payload common to all endpoints."""
    model_config = ConfigDict(extra="allow")

    result: Optional[str] = None
    status: Optional[str] = None
    status_msg: Optional[str] = None
    txid: Optional[str] = None
    time: Optional[int] = None
    devices: List[Device] = Field(default_factory=list)
    raw: Dict[str, Any] = Field(default_factory=dict, exclude=True)

    @classmethod
    def from_payload(cls, payload: Union[Dict[str, Any], int, str, None]) -> "ProviderResponse":
        # /ping and /check answer with {"time": ...}; some routes return a bare value
        if isinstance(payload, dict):
            return cls.model_validate({**payload, "raw": payload})
        if isinstance(payload, int):
            return cls(time=payload, raw={"time": payload})
        return cls(raw={"value": payload})
