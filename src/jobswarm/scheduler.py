# scheduler.py
from __future__ import annotations

import json
import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

from croniter import CroniterBadDateError, croniter

from .executor import ActionExecutor
from .model import ActionContext, ActionParseError, CronEntry, action_to_dict

logger = logging.getLogger(__name__)


def local_now() -> datetime:
    return datetime.now().astimezone()


def is_valid_schedule(expr: str) -> bool:
    """True for a syntactically valid 5-field cron expression."""
    if not isinstance(expr, str) or len(expr.split()) != 5:
        return False
    return croniter.is_valid(expr)


def read_json_table(path: Path) -> List[Dict[str, Any]]:
    """
    Read a declarative JSON table (CRONS.json / TRIGGERS.json).

    A missing file is an empty table. A file that is not a JSON array raises
    ValueError.
    """
    if not path.exists():
        logger.info("No %s found, skipping", path.name)
        return []
    data = json.loads(path.read_text(encoding="utf-8"))
    if not isinstance(data, list):
        raise ValueError(f"{path} must contain a JSON array")
    return data


# ----------------------------------------------------------------------
# Registry
# ----------------------------------------------------------------------

@dataclass
class RegisteredCron:
    entry: CronEntry
    next_fire: datetime

    def advance(self, now: datetime) -> None:
        self.next_fire = croniter(self.entry.schedule, now).get_next(datetime)


class CronRegistry:
    """The timers registered at startup. Only `CronScheduler.load()` adds to it."""

    def __init__(self) -> None:
        self._timers: List[RegisteredCron] = []

    def register(self, entry: CronEntry, now: datetime) -> RegisteredCron:
        timer = RegisteredCron(entry=entry, next_fire=croniter(entry.schedule, now).get_next(datetime))
        self._timers.append(timer)
        return timer

    def __len__(self) -> int:
        return len(self._timers)

    def __iter__(self):
        return iter(list(self._timers))

    @property
    def names(self) -> List[str]:
        return [t.entry.name for t in self._timers]

    def due(self, now: datetime) -> List[RegisteredCron]:
        return [t for t in self._timers if t.next_fire <= now]

    def next_fire_time(self) -> Optional[datetime]:
        return min((t.next_fire for t in self._timers), default=None)


# ----------------------------------------------------------------------
# Scheduler
# ----------------------------------------------------------------------

class CronScheduler:
    """
    Fires cron entries through the action executor.

    One instance owns the registry for the process lifetime; entries are
    loaded once and never reloaded. A failing entry is logged and never
    affects the others.
    """

    def __init__(
        self,
        executor: ActionExecutor,
        *,
        cwd: Optional[Path] = None,
        clock: Callable[[], datetime] = local_now,
        max_workers: int = 4,
    ) -> None:
        self.executor = executor
        self.cwd = cwd
        self.clock = clock
        self.registry = CronRegistry()
        self._loaded = False
        self._pool = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="jobswarm-cron")
        self._thread: Optional[threading.Thread] = None
        self._stop = threading.Event()

    # ---- loading ----

    def load(self, table: List[Dict[str, Any]]) -> CronRegistry:
        """
        Validate and register every entry of a cron table.

        Disabled entries are skipped silently; malformed entries and invalid
        schedules are logged and skipped.
        """
        if self._loaded:
            raise RuntimeError("cron table already loaded")
        self._loaded = True

        now = self.clock()
        for raw in table:
            name = raw.get("name", "<unnamed>") if isinstance(raw, dict) else "<invalid>"
            if isinstance(raw, dict) and raw.get("enabled") is False:
                continue
            try:
                entry = CronEntry.from_dict(raw)
            except ActionParseError as e:
                logger.error("Invalid cron entry %r: %s", name, e)
                continue
            if not is_valid_schedule(entry.schedule):
                logger.error('Invalid cron schedule for "%s": %s', entry.name, entry.schedule)
                continue

            try:
                self.registry.register(entry, now)
            except (CroniterBadDateError, ValueError) as e:
                # valid syntax that never matches a real date, e.g. "0 0 31 2 *"
                logger.error('Invalid cron schedule for "%s": %s (%s)', entry.name, entry.schedule, e)
                continue
            logger.info("Scheduled cron: %s (%s)", entry.name, entry.schedule)

        return self.registry

    def load_file(self, path: Path) -> CronRegistry:
        return self.load(read_json_table(path))

    # ---- firing ----

    def fire(self, entry: CronEntry) -> Optional[str]:
        """Run one entry's action. Returns the outcome, or None if it failed."""
        logger.info("Running cron: %s", entry.name)
        context = ActionContext(cwd=str(self.cwd) if self.cwd else None)
        try:
            outcome = self.executor.execute(entry.action, context)
        except Exception as e:
            logger.error("Cron %s failed: %s", entry.name, e)
            return None
        logger.info("Cron %s completed: %s", entry.name, outcome)
        return outcome

    def tick(self, now: Optional[datetime] = None) -> List[Future]:
        """Fire every timer due at `now` and move it to its next slot."""
        now = now or self.clock()
        futures = []
        for timer in self.registry.due(now):
            futures.append(self._pool.submit(self.fire, timer.entry))
            timer.advance(now)
        return futures

    # ---- lifecycle ----

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        if self.running:
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._run_loop, name="jobswarm-cron", daemon=True)
        self._thread.start()

    def stop(self, *, timeout_s: float = 5.0) -> None:
        self._stop.set()
        t = self._thread
        if t is not None:
            t.join(timeout=timeout_s)
        self._pool.shutdown(wait=False)

    def wait(self) -> None:
        """Block until stop() is called (foreground mode)."""
        self._stop.wait()

    def _run_loop(self) -> None:
        while not self._stop.is_set():
            self.tick()
            next_at = self.registry.next_fire_time()
            timeout = 60.0
            if next_at is not None:
                timeout = min(timeout, max(0.0, (next_at - self.clock()).total_seconds()))
            self._stop.wait(timeout=timeout)

    def snapshot(self) -> Dict[str, Any]:
        return {
            "running": self.running,
            "crons": [
                {
                    "name": t.entry.name,
                    "schedule": t.entry.schedule,
                    "type": t.entry.action.type,
                    "next_fire": t.next_fire.isoformat(),
                    "action": action_to_dict(t.entry.action),
                }
                for t in self.registry
            ],
        }
