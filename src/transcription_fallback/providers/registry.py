"""Provider registry — catalog of transcription backends in insertion order."""

from __future__ import annotations

import threading
from typing import Iterable, Iterator

import structlog

from transcription_fallback.exceptions import DuplicateProviderError, UnknownProviderError
from transcription_fallback.providers.types import ProviderConfig

logger = structlog.get_logger(__name__)


class ProviderRegistry:
    """Holds ``ProviderConfig`` entries; allows hot registration."""

    def __init__(self, providers: Iterable[ProviderConfig] = ()) -> None:
        self._providers: dict[str, ProviderConfig] = {}
        self._aliases: dict[str, str] = {}
        self._lock = threading.Lock()
        for cfg in providers:
            self.register(cfg)

    def register(self, config: ProviderConfig) -> None:
        with self._lock:
            names = (config.provider_id, *config.aliases)
            for name in names:
                if name in self._providers or name in self._aliases:
                    raise DuplicateProviderError(name)
            self._providers[config.provider_id] = config
            for alias in config.aliases:
                self._aliases[alias] = config.provider_id
        logger.info(
            "provider_registered",
            provider=config.provider_id,
            priority=config.priority,
            aliases=list(config.aliases),
        )

    def resolve(self, provider_id: str) -> str:
        """Map an alias to its canonical id; unknown ids pass through."""
        return self._aliases.get(provider_id, provider_id)

    def get(self, provider_id: str) -> ProviderConfig:
        try:
            return self._providers[self.resolve(provider_id)]
        except KeyError:
            raise UnknownProviderError(provider_id) from None

    def ids(self) -> list[str]:
        return list(self._providers)

    def position(self, provider_id: str) -> int:
        """Insertion index, used as the deterministic tie-breaker."""
        try:
            return self.ids().index(self.resolve(provider_id))
        except ValueError:
            raise UnknownProviderError(provider_id) from None

    def __contains__(self, provider_id: object) -> bool:
        return isinstance(provider_id, str) and self.resolve(provider_id) in self._providers

    def __iter__(self) -> Iterator[ProviderConfig]:
        return iter(list(self._providers.values()))

    def __len__(self) -> int:
        return len(self._providers)
