"""Pydantic request models for daemon endpoints."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field


class ActivateRequest(BaseModel):
    proxy_port: int = Field(gt=0, lt=65536)
    options: dict[str, Any] = Field(default_factory=dict)


class DeactivateRequest(BaseModel):
    proxy_port: int = Field(gt=0, lt=65536)
