# triggers.py
from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional

from .executor import ActionExecutor
from .model import ActionContext, ActionParseError, TriggerEntry
from .scheduler import read_json_table
from .settings import Settings

logger = logging.getLogger(__name__)


@dataclass
class ActionResult:
    trigger: str
    index: int
    outcome: Optional[str] = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None


def load_triggers(table: List[Dict[str, Any]]) -> List[TriggerEntry]:
    """Parse a trigger table, dropping disabled and malformed entries."""
    triggers: List[TriggerEntry] = []
    for raw in table:
        try:
            entry = TriggerEntry.from_dict(raw)
        except ActionParseError as e:
            logger.error("Invalid trigger entry: %s", e)
            continue
        if not entry.enabled:
            continue
        triggers.append(entry)
        logger.info("Watching %s for trigger: %s (%d action(s))", entry.watch_path, entry.name, len(entry.actions))
    return triggers


def load_swarm_config(settings: Settings) -> Dict[str, List[Dict[str, Any]]]:
    """Raw cron and trigger tables for display. Unreadable tables come back empty."""
    tables: Dict[str, List[Dict[str, Any]]] = {}
    for key, path in (("crons", settings.crons_file), ("triggers", settings.triggers_file)):
        try:
            tables[key] = read_json_table(path)
        except (OSError, ValueError) as e:
            logger.warning("Could not read %s: %s", path, e)
            tables[key] = []
    return tables


class TriggerRunner:
    """Fires the triggers watching an inbound request path."""

    def __init__(
        self,
        executor: ActionExecutor,
        triggers: List[TriggerEntry],
        *,
        cwd: Optional[Path] = None,
    ) -> None:
        self.executor = executor
        self.triggers = list(triggers)
        self.cwd = cwd

    def watching(self, path: str) -> List[TriggerEntry]:
        return [t for t in self.triggers if t.watch_path == path]

    def fire(self, path: str, data: Any = None) -> List[ActionResult]:
        """
        Run the actions of every trigger watching `path`, in declared order.

        `data` (usually the inbound request body) is forwarded to webhook
        actions. A failing action is logged and the remaining actions still run.
        """
        results: List[ActionResult] = []
        context = ActionContext(cwd=str(self.cwd) if self.cwd else None, data=data)

        for trigger in self.watching(path):
            logger.info("Firing trigger: %s (%s)", trigger.name, path)
            for index, action in enumerate(trigger.actions):
                result = ActionResult(trigger=trigger.name, index=index)
                try:
                    result.outcome = self.executor.execute(action, context)
                    logger.info("Trigger %s action %d: %s", trigger.name, index + 1, result.outcome)
                except Exception as e:
                    result.error = str(e)
                    logger.error("Trigger %s action %d failed: %s", trigger.name, index + 1, e)
                results.append(result)

        return results
