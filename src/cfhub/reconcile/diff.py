"""Default diff strategy shared by integrations."""

from __future__ import annotations

from typing import Iterable

from cfhub.core.actions import Action
from cfhub.core.resource import Resource


def plan_actions(
    actual: Iterable[Resource],
    desired: Iterable[Resource],
    *,
    detect_updates: bool = False,
) -> list[Action]:
    """Compute the actions converging ``actual`` toward ``desired``.

    Resources are matched by ``id`` only. Desired ids missing from actual produce
    ``create`` actions (in desired order), actual ids missing from desired produce
    ``delete`` actions (in actual order). Resources present on both sides are left
    alone unless ``detect_updates`` is set, in which case a differing configuration
    yields an ``update`` carrying the desired configuration.
    """
    actual = list(actual)
    desired = list(desired)
    actual_by_id = {resource.id: resource for resource in actual}
    desired_ids = {resource.id for resource in desired}

    creates: list[Action] = []
    updates: list[Action] = []
    for resource in desired:
        current = actual_by_id.get(resource.id)
        if current is None:
            creates.append(Action.create(resource.id, resource.type, resource.configuration))
        elif detect_updates and current.configuration != resource.configuration:
            updates.append(Action.update(resource.id, resource.type, resource.configuration))

    deletes = [
        Action.delete(resource.id, resource.type)
        for resource in actual
        if resource.id not in desired_ids
    ]
    return creates + updates + deletes
