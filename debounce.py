from __future__ import annotations

import asyncio
import logging
from typing import Callable, Final, Optional

from settings_store import DEBOUNCE_RANGE_MS, SettingsStore

DEFAULT_DEBOUNCE_MS: Final[dict[str, int]] = {"ja": 346, "en": 154}
FALLBACK_DEBOUNCE_MS: Final[int] = 300


class DebounceTimer:
    """Single cancellable timer on the running event loop.

    Arming always disarms the previous handle, so at most one expiry is
    pending at any time.
    """

    def __init__(self, loop: Optional[asyncio.AbstractEventLoop] = None) -> None:
        self._loop = loop
        self._handle: Optional[asyncio.TimerHandle] = None

    @property
    def armed(self) -> bool:
        return self._handle is not None and not self._handle.cancelled()

    def arm(self, delay_ms: float, callback: Callable[[], None]) -> asyncio.TimerHandle:
        self.disarm()
        loop = self._loop or asyncio.get_running_loop()
        handle: Optional[asyncio.TimerHandle] = None

        def _fire() -> None:
            if self._handle is handle:
                self._handle = None
            callback()

        handle = loop.call_later(max(0.0, delay_ms) / 1000.0, _fire)
        self._handle = handle
        return handle

    def disarm(self, handle: Optional[asyncio.TimerHandle] = None) -> None:
        target = handle or self._handle
        if target is None:
            return
        target.cancel()
        if target is self._handle:
            self._handle = None


class DebounceParameters:
    def __init__(self, store: Optional[SettingsStore] = None) -> None:
        self._store = store
        self._delays: dict[str, int] = dict(DEFAULT_DEBOUNCE_MS)
        if store is not None:
            for language in DEFAULT_DEBOUNCE_MS:
                persisted = store.debounce_delay(language)
                if persisted is not None:
                    self._delays[language] = persisted

    def delay_ms(self, language: str) -> int:
        if language not in self._delays and self._store is not None:
            persisted = self._store.debounce_delay(language)
            if persisted is not None:
                self._delays[language] = persisted
        return self._delays.get(language, FALLBACK_DEBOUNCE_MS)

    def apply(self, language: str, delay_ms: int) -> None:
        low, high = DEBOUNCE_RANGE_MS
        bounded = int(min(high, max(low, delay_ms)))
        previous = self.delay_ms(language)
        self._delays[language] = bounded
        if self._store is not None:
            self._store.set_debounce_delay(language, bounded)
        logging.info("debounce_tuned language=%s previous_ms=%d delay_ms=%d", language, previous, bounded)
