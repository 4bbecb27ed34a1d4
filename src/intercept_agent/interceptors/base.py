"""Interceptor contract shared by every activation strategy."""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Awaitable
from typing import Any, TypeVar

import structlog
from pydantic import BaseModel, ValidationError

from intercept_agent.errors import invalid_options_error

logger = structlog.get_logger()

OptionsT = TypeVar("OptionsT", bound=BaseModel)
T = TypeVar("T")


class Interceptor(ABC):
    """Base class for a target kind that can be pointed at the proxy."""

    id: str
    version: str = "1.0.0"
    # Seconds the caller should allow is_activable() before giving up on it.
    activable_timeout: float = 1.0

    @abstractmethod
    async def is_activable(self) -> bool:
        """Cheap check whether activation could succeed right now."""

    @abstractmethod
    def is_active(self, proxy_port: int) -> bool:
        """True iff at least one live session is tracked for the port."""

    @abstractmethod
    async def activate(
        self, proxy_port: int, options: BaseModel | dict[str, Any] | None = None
    ) -> dict[str, Any] | None:
        """Point a target at the proxy on ``proxy_port``."""

    @abstractmethod
    async def deactivate(self, proxy_port: int) -> None:
        """Tear down every session for the port. Never raises."""

    @abstractmethod
    async def deactivate_all(self) -> None:
        """Tear down every tracked session. Never raises."""

    async def get_metadata(self) -> dict[str, Any] | None:
        """Snapshot of discoverable targets, if this kind has any."""
        return None

    def parse_options(
        self, model: type[OptionsT], options: BaseModel | dict[str, Any] | None
    ) -> OptionsT:
        """Coerce caller-supplied options into the interceptor's options model."""
        if isinstance(options, model):
            return options
        if isinstance(options, BaseModel):
            options = options.model_dump()
        try:
            return model.model_validate(options or {})
        except ValidationError as exc:
            raise invalid_options_error(self.id, str(exc)) from None


async def best_effort(step: str, awaitable: Awaitable[T], **context: Any) -> T | None:
    """Await a non-critical step, logging instead of raising on failure."""
    try:
        return await awaitable
    except Exception as exc:
        logger.warning("best_effort_step_failed", step=step, error=str(exc), **context)
        return None
