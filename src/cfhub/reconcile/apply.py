"""Sequential apply executor with per-action failure isolation."""

from __future__ import annotations

import time
from typing import Any, Awaitable, Callable, Iterable

import structlog

from cfhub.core.actions import Action, ApplyResult, FailedAction
from cfhub.core.errors import IntegrationError, error_from_transport

logger = structlog.get_logger()

ActionExecutor = Callable[[Action], Awaitable[None]]


async def apply_actions(
    actions: Iterable[Action],
    execute: ActionExecutor,
    *,
    metadata: dict[str, Any] | None = None,
) -> ApplyResult:
    """Run ``execute`` for each action strictly in order.

    A failing action is recorded in ``failed`` and the next action still runs.
    Non-taxonomy exceptions are translated with ``error_from_transport``.
    """
    started = time.monotonic()
    result = ApplyResult(metadata=dict(metadata or {}))

    for action in actions:
        try:
            await execute(action)
        except IntegrationError as exc:
            result.failed.append(FailedAction(action=action, error=exc))
            logger.warning(
                "action_failed",
                action=action.describe(),
                code=exc.code,
                error=exc.message,
            )
        except Exception as exc:  # noqa: BLE001 - isolated per action
            error = error_from_transport(exc)
            result.failed.append(FailedAction(action=action, error=error))
            logger.warning(
                "action_failed",
                action=action.describe(),
                code=error.code,
                error=error.message,
            )
        else:
            result.successful.append(action)
            logger.info("action_applied", action=action.describe())

    result.duration = time.monotonic() - started
    logger.info(
        "apply_completed",
        successful=len(result.successful),
        failed=len(result.failed),
        duration=result.duration,
    )
    return result
