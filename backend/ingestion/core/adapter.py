from __future__ import annotations

"""Source adapter contract.

Rules:
- An adapter turns one configured source into ``ContentCollected`` facts.
- ``collect`` raises on transport failure; the job runner wraps it in retry and a
  circuit breaker, so adapters must not retry on their own.
- ``collect`` must be safe to repeat: it reads, it never writes.
"""

import abc
from typing import Optional

from ingestion.core.events import ContentCollected
from ingestion.core.source_config import SourceConfiguration
from ingestion.core.value_objects import SourceType


class BaseAdapter(abc.ABC):
    """Abstract source adapter."""

    source_type: SourceType

    @abc.abstractmethod
    async def collect(self, source: SourceConfiguration, job_id: str) -> list[ContentCollected]:
        """Fetch the source and return one fact per raw item."""


class AdapterRegistry:
    def __init__(self, adapters: Optional[list[BaseAdapter]] = None):
        self._adapters: dict[SourceType, BaseAdapter] = {}
        for adapter in adapters or []:
            self.register(adapter)

    def register(self, adapter: BaseAdapter) -> None:
        self._adapters[adapter.source_type] = adapter

    def get(self, source_type: SourceType) -> Optional[BaseAdapter]:
        return self._adapters.get(source_type)

    def supported_types(self) -> list[SourceType]:
        return sorted(self._adapters, key=lambda t: t.value)
