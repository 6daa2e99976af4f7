from .executor import ActionExecutor
from .jobs import JobDispatcher
from .model import AgentAction, CommandAction, WebhookAction, ActionContext, CronEntry, TriggerEntry, parse_action
from .scheduler import CronScheduler
from .status import StatusTracker

__all__ = [
    "ActionExecutor",
    "JobDispatcher",
    "StatusTracker",
    "CronScheduler",
    "AgentAction",
    "CommandAction",
    "WebhookAction",
    "ActionContext",
    "CronEntry",
    "TriggerEntry",
    "parse_action",
]
