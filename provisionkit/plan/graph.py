"""
Dependency graph helpers for provisioning steps.

The execution order is a stable topological sort: among steps whose
dependencies are all ordered, the one declared first goes next. The same plan
therefore always runs in the same order.
"""

from typing import Dict, Iterable, List, Sequence, Set

from provisionkit.core.exceptions import PlanDefinitionError
from provisionkit.plan.step import Step


def index_steps(steps: Iterable[Step]) -> Dict[str, Step]:
    """
    Map step ids to steps.

    Raises:
        PlanDefinitionError: If two steps share an id
    """
    by_id: Dict[str, Step] = {}
    for step in steps:
        if step.id in by_id:
            raise PlanDefinitionError(f"Duplicate step id: {step.id}")
        by_id[step.id] = step
    return by_id


def find_unknown_dependencies(steps: Sequence[Step]) -> Dict[str, List[str]]:
    """Return step id -> dependency ids that no step in ``steps`` defines."""
    known = {step.id for step in steps}
    missing: Dict[str, List[str]] = {}
    for step in steps:
        unknown = sorted(dep for dep in step.depends_on if dep not in known)
        if unknown:
            missing[step.id] = unknown
    return missing


def topological_order(steps: Sequence[Step]) -> List[Step]:
    """
    Order steps so that every step follows all of its dependencies.

    Dependencies on unknown ids are ignored here; they are reported by
    :func:`find_unknown_dependencies`.

    Raises:
        PlanDefinitionError: On duplicate ids or dependency cycles
    """
    by_id = index_steps(steps)
    remaining = {
        step.id: {dep for dep in step.depends_on if dep in by_id} for step in steps
    }
    order: List[Step] = []

    while remaining:
        ready = next(
            (step for step in steps if step.id in remaining and not remaining[step.id]),
            None,
        )
        if ready is None:
            cycle = _find_cycle(remaining)
            raise PlanDefinitionError(f"Dependency cycle: {' -> '.join(cycle)}")

        order.append(ready)
        del remaining[ready.id]
        for deps in remaining.values():
            deps.discard(ready.id)

    return order


def _find_cycle(remaining: Dict[str, Set[str]]) -> List[str]:
    # Every remaining node has an unresolved dependency, so walking them must loop
    start = sorted(remaining)[0]
    path: List[str] = []
    seen: Dict[str, int] = {}
    node = start
    while node not in seen:
        seen[node] = len(path)
        path.append(node)
        node = sorted(remaining[node])[0]
    return path[seen[node]:] + [node]


def ancestors(step_id: str, by_id: Dict[str, Step]) -> Set[str]:
    """All steps ``step_id`` transitively depends on."""
    found: Set[str] = set()
    stack = list(by_id[step_id].depends_on)
    while stack:
        dep = stack.pop()
        if dep in found or dep not in by_id:
            continue
        found.add(dep)
        stack.extend(by_id[dep].depends_on)
    return found


def dependency_chain(step_id: str, order: Sequence[Step]) -> List[str]:
    """
    Ids of ``step_id`` and everything it depends on, in execution order.

    Example:
        >>> dependency_chain("log4cpp", order)
        ['choco', 'msbuild', 'log4cpp-src', 'log4cpp']
    """
    by_id = {step.id: step for step in order}
    wanted = ancestors(step_id, by_id) | {step_id}
    return [step.id for step in order if step.id in wanted]


def are_independent(first: str, second: str, by_id: Dict[str, Step]) -> bool:
    """True if neither step transitively depends on the other."""
    return first not in ancestors(second, by_id) and second not in ancestors(first, by_id)


__all__ = [
    "index_steps",
    "find_unknown_dependencies",
    "topological_order",
    "ancestors",
    "dependency_chain",
    "are_independent",
]
