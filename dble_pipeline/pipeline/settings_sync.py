"""
Stage Settings Synchronization

Client-side buffer for per-stage settings (workflow.config.stage_settings).
Edits are merged locally and written after a quiet period: every edit in a
burst restarts the timer, so one burst produces exactly one write carrying
the final merged values. Stages with unacknowledged local edits are never
overwritten by a polled server snapshot.
"""

import asyncio
import copy
import logging
from typing import Any, Awaitable, Callable, Dict, Iterable, Optional

logger = logging.getLogger(__name__)

DEFAULT_DEBOUNCE_SECONDS = 0.5

SettingsPersister = Callable[[Dict[str, Dict[str, Any]]], Awaitable[Any]]


class StageSet:
    """Ordered set for list-valued settings such as selected asset ids."""

    def __init__(self, items: Iterable[Any] = ()):
        self._items = dict.fromkeys(items)

    def add(self, item):
        self._items[item] = None

    def remove(self, item):
        self._items.pop(item, None)

    def toggle(self, item) -> bool:
        """Flip membership. Returns True if the item is now present."""
        if item in self._items:
            self.remove(item)
            return False
        self.add(item)
        return True

    def __contains__(self, item) -> bool:
        return item in self._items

    def __iter__(self):
        return iter(self._items)

    def __len__(self) -> int:
        return len(self._items)

    def to_list(self) -> list:
        return list(self._items)


class StageSettingsSync:
    def __init__(self, persist: SettingsPersister, delay: float = DEFAULT_DEBOUNCE_SECONDS,
                 initial: Optional[Dict[str, Dict[str, Any]]] = None):
        self._persist = persist
        self.delay = delay
        self.settings: Dict[str, Dict[str, Any]] = copy.deepcopy(initial or {})
        self.last_error: Optional[BaseException] = None
        self._dirty: Dict[str, int] = {}  # stage -> edit generation not yet acknowledged
        self._generation = 0
        self._timer: Optional[asyncio.Task] = None
        self._write_lock = asyncio.Lock()
        self._writing = False

    # --- Local edits ---

    def get(self, stage: str, key: str, default=None):
        return self.settings.get(stage, {}).get(key, default)

    def update(self, stage: str, key: str, value: Any):
        """Merge one value locally and (re)start the debounce timer."""
        self.settings.setdefault(stage, {})[key] = value
        self._generation += 1
        self._dirty[stage] = self._generation
        self._schedule()

    def toggle_item(self, stage: str, key: str, item: Any) -> bool:
        members = StageSet(self.get(stage, key) or [])
        present = members.toggle(item)
        self.update(stage, key, members.to_list())
        return present

    @property
    def pending(self) -> bool:
        """True while an edit is waiting for, or riding on, an unacknowledged write."""
        return bool(self._dirty) or self._writing or (self._timer is not None and not self._timer.done())

    # --- Server reconciliation ---

    def apply_snapshot(self, server_settings: Optional[Dict[str, Dict[str, Any]]]):
        """Adopt a fetched server snapshot except for stages with unacknowledged edits."""
        for stage, values in (server_settings or {}).items():
            if stage in self._dirty:
                continue
            self.settings[stage] = copy.deepcopy(values or {})

    # --- Writes ---

    def _schedule(self):
        if self._timer is not None and not self._timer.done():
            self._timer.cancel()
        self._timer = asyncio.get_running_loop().create_task(self._debounced())

    async def _debounced(self):
        await asyncio.sleep(self.delay)
        self._timer = None
        await self._write()

    async def _write(self):
        async with self._write_lock:
            if not self._dirty:
                return
            sent = dict(self._dirty)
            payload = {stage: copy.deepcopy(self.settings.get(stage, {})) for stage in sent}
            self._writing = True
            try:
                await self._persist(payload)
            except Exception as e:
                # Stages stay dirty; the next edit or flush retries them
                self.last_error = e
                logger.warning("[settings] failed to save stage settings for %s",
                               ", ".join(sorted(payload)), exc_info=True)
                return
            finally:
                self._writing = False

            self.last_error = None
            for stage, generation in sent.items():
                if self._dirty.get(stage) == generation:
                    del self._dirty[stage]

    async def flush(self):
        """Write any buffered edits now instead of waiting for the timer."""
        if self._timer is not None and not self._timer.done():
            self._timer.cancel()
        self._timer = None
        await self._write()

    async def aclose(self):
        await self.flush()


def engine_persister(engine, workflow_id: str) -> SettingsPersister:
    """Persist a burst through a WorkflowEngine as a single merge-by-key write."""
    async def persist(settings_by_stage: Dict[str, Dict[str, Any]]):
        return await asyncio.to_thread(engine.update_settings, workflow_id, settings_by_stage)
    return persist
