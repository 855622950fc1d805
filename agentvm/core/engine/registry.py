"""
Step registry — ordered, dependency-aware collection of steps.

Ordering is a first-class artifact: ``resolve_order(variant)`` runs
Kahn's algorithm over the steps that apply to the variant and always
picks the earliest-registered ready step next, so siblings without a
dependency between them keep their registration order.
"""

from __future__ import annotations

import heapq
import logging
from collections.abc import Iterable, Iterator

from agentvm.core.errors import (
    CyclicDependencyError,
    DuplicateStepError,
    MissingDependencyError,
)
from agentvm.core.models.step import Step
from agentvm.core.models.variant import Variant

logger = logging.getLogger(__name__)


class StepRegistry:
    """Holds steps keyed by id, in registration order."""

    def __init__(self, steps: Iterable[Step] = ()):
        self._steps: dict[str, Step] = {}
        for step in steps:
            self.register(step)

    def register(self, step: Step) -> None:
        """Add a step.

        Raises:
            DuplicateStepError: If a step with the same id exists.
        """
        if step.id in self._steps:
            raise DuplicateStepError(step.id)
        self._steps[step.id] = step
        logger.debug("Registered step: %s", step.id)

    def get(self, step_id: str) -> Step | None:
        return self._steps.get(step_id)

    def __contains__(self, step_id: object) -> bool:
        return step_id in self._steps

    def __iter__(self) -> Iterator[Step]:
        return iter(self._steps.values())

    def __len__(self) -> int:
        return len(self._steps)

    def steps_for(self, variant: Variant) -> list[Step]:
        """Steps applying to ``variant``, in registration order."""
        return [s for s in self._steps.values() if s.applies_to(variant)]

    def resolve_order(self, variant: Variant) -> list[Step]:
        """Topologically sort the variant's steps.

        Raises:
            MissingDependencyError: A step depends on an id that is not
                registered for this variant.
            CyclicDependencyError: No valid order exists.
        """
        steps = self.steps_for(variant)
        position = {s.id: i for i, s in enumerate(steps)}

        for step in steps:
            for dep in step.depends_on:
                if dep not in position:
                    raise MissingDependencyError(step.id, dep)

        in_degree = {s.id: len(set(s.depends_on)) for s in steps}
        dependents: dict[str, list[str]] = {s.id: [] for s in steps}
        for step in steps:
            for dep in set(step.depends_on):
                dependents[dep].append(step.id)

        ready = [position[sid] for sid, deg in in_degree.items() if deg == 0]
        heapq.heapify(ready)
        ordered: list[Step] = []

        while ready:
            step = steps[heapq.heappop(ready)]
            ordered.append(step)
            for successor in dependents[step.id]:
                in_degree[successor] -= 1
                if in_degree[successor] == 0:
                    heapq.heappush(ready, position[successor])

        if len(ordered) < len(steps):
            stuck = [s.id for s in steps if in_degree[s.id] > 0]
            raise CyclicDependencyError(stuck)

        return ordered

    def dependents_of(self, step_id: str, variant: Variant) -> set[str]:
        """Every step (transitively) depending on ``step_id``."""
        direct: dict[str, list[str]] = {}
        for step in self.steps_for(variant):
            for dep in step.depends_on:
                direct.setdefault(dep, []).append(step.id)

        found: set[str] = set()
        frontier = [step_id]
        while frontier:
            current = frontier.pop()
            for child in direct.get(current, []):
                if child not in found:
                    found.add(child)
                    frontier.append(child)
        return found
