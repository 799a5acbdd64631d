"""Plan/apply building blocks usable by any integration."""

from cfhub.reconcile.apply import ActionExecutor, apply_actions
from cfhub.reconcile.diff import plan_actions

__all__ = ["ActionExecutor", "apply_actions", "plan_actions"]
