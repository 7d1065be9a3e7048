"""Module state resolution and module graph validation.

Every function in this module is a pure function of its arguments: the
resolver is safe to call repeatedly from read paths and never mutates the
progress record it is given.
"""

from __future__ import annotations

import heapq
import logging
from typing import Dict, Iterable, List, Mapping, Optional, Sequence, Set, Tuple

from .errors import TrackDefinitionError
from .roadmap import ModuleDef, ModuleResolution, ModuleStatus, QuizAttempt, TrackDefinition, TrackProgress

logger = logging.getLogger(__name__)

DEFAULT_PASSING_THRESHOLD = 70.0


def linear_order(track: TrackDefinition) -> List[ModuleDef]:
    """Modules ordered by ``level`` with authoring order breaking ties."""
    indexed = list(enumerate(track.modules))
    indexed.sort(key=lambda entry: (entry[1].level, entry[0]))
    return [module for _, module in indexed]


def entry_point_ids(track: TrackDefinition) -> Set[str]:
    """Modules that are available without any completed prerequisite.

    Explicitly flagged entry points win. Tracks authored before the flag
    existed fall back to the lowest-level module without prerequisites.
    """
    flagged = {module.module_id for module in track.modules if module.is_entry_point}
    if flagged:
        return flagged
    for module in linear_order(track):
        if not module.prerequisites:
            return {module.module_id}
    return set()


def passed_quiz_ids(
    attempts: Iterable[QuizAttempt],
    *,
    passing_threshold: float = DEFAULT_PASSING_THRESHOLD,
) -> Set[str]:
    return {attempt.quiz_id for attempt in attempts if attempt.percentage >= passing_threshold}


def _linear_predecessors(track: TrackDefinition) -> Dict[str, Optional[str]]:
    ordered = linear_order(track)
    predecessors: Dict[str, Optional[str]] = {}
    previous: Optional[str] = None
    for module in ordered:
        predecessors[module.module_id] = previous
        previous = module.module_id
    return predecessors


def _missing_requirements(
    module: ModuleDef,
    completed: Set[str],
    predecessor: Optional[str],
) -> List[str]:
    if module.prerequisites:
        return [prerequisite for prerequisite in module.prerequisites if prerequisite not in completed]
    if predecessor is None or predecessor in completed:
        return []
    return [predecessor]


def _sub_item_counts(module: ModuleDef, progress: TrackProgress, passed_quizzes: Set[str]) -> Tuple[int, int]:
    quiz_ids = list(dict.fromkeys(module.quiz_ids))
    defined_subs = {sub.id for sub in module.sub_modules}
    done_subs = progress.completed_sub_modules_for(module.module_id) & defined_subs
    done_quizzes = [quiz_id for quiz_id in quiz_ids if quiz_id in passed_quizzes]
    total = len(defined_subs) + len(quiz_ids)
    return len(done_subs) + len(done_quizzes), total


def resolve_track_state(
    track: TrackDefinition,
    progress: TrackProgress,
    *,
    attempts: Iterable[QuizAttempt] = (),
    passing_threshold: float = DEFAULT_PASSING_THRESHOLD,
) -> Dict[str, ModuleResolution]:
    """Compute ``locked``/``available``/``completed`` and progress for every module.

    A module that has every sub-item done but was never explicitly completed
    stays ``available``; completion only happens through the orchestrator.
    """
    completed = set(progress.completed_modules)
    unlocked = set(progress.unlocked_modules)
    entry_points = entry_point_ids(track)
    predecessors = _linear_predecessors(track)
    passed_quizzes = passed_quiz_ids(attempts, passing_threshold=passing_threshold)

    resolutions: Dict[str, ModuleResolution] = {}
    for module in track.modules:
        missing: List[str] = []
        state: ModuleStatus
        if module.module_id in completed:
            state = "completed"
        elif module.module_id in unlocked or module.module_id in entry_points:
            state = "available"
        else:
            missing = _missing_requirements(module, completed, predecessors.get(module.module_id))
            state = "locked" if missing else "available"

        done, total = _sub_item_counts(module, progress, passed_quizzes)
        percent = round(done / total * 100, 2) if total else 0.0
        resolutions[module.module_id] = ModuleResolution(
            module_id=module.module_id,
            state=state,
            progress_percent=percent,
            completed_sub_items=done,
            total_sub_items=total,
            missing_prerequisites=missing,
        )
    return resolutions


def newly_available(
    before: Mapping[str, ModuleResolution],
    after: Mapping[str, ModuleResolution],
) -> List[str]:
    """Module ids that moved from ``locked`` to ``available`` between two resolutions."""
    return [
        module_id
        for module_id, resolution in after.items()
        if resolution.state == "available"
        and module_id in before
        and before[module_id].state == "locked"
    ]


def available_module_ids(resolutions: Mapping[str, ModuleResolution]) -> List[str]:
    return [module_id for module_id, resolution in resolutions.items() if resolution.state == "available"]


def track_progress_percent(resolutions: Mapping[str, ModuleResolution]) -> float:
    if not resolutions:
        return 0.0
    completed = sum(1 for resolution in resolutions.values() if resolution.state == "completed")
    return round(completed / len(resolutions) * 100, 2)


def topological_order(modules: Sequence[ModuleDef]) -> List[str]:
    """Order module ids so prerequisites come first.

    Ready modules are released lowest level first, then in authoring order.
    Raises :class:`TrackDefinitionError` for self references, unknown
    prerequisites and cycles.
    """
    module_map: Dict[str, ModuleDef] = {}
    priority_map: Dict[str, Tuple[int, int]] = {}
    for index, module in enumerate(modules):
        module_map[module.module_id] = module
        priority_map[module.module_id] = (module.level, index)

    graph: Dict[str, Set[str]] = {module_id: set() for module_id in module_map}
    indegree: Dict[str, int] = {module_id: 0 for module_id in module_map}

    for module_id, module in module_map.items():
        for dependency in set(module.prerequisites):
            if dependency == module_id:
                raise TrackDefinitionError(f"Module '{module_id}' references itself as a prerequisite.")
            if dependency not in module_map:
                raise TrackDefinitionError(
                    f"Module '{module_id}' references unknown prerequisite '{dependency}'."
                )
            graph[dependency].add(module_id)
            indegree[module_id] += 1

    available: List[Tuple[Tuple[int, int], str]] = []
    for module_id, degree in indegree.items():
        if degree == 0:
            heapq.heappush(available, (priority_map[module_id], module_id))

    ordered_ids: List[str] = []
    while available:
        _, module_id = heapq.heappop(available)
        ordered_ids.append(module_id)
        for neighbour in graph[module_id]:
            indegree[neighbour] -= 1
            if indegree[neighbour] == 0:
                heapq.heappush(available, (priority_map[neighbour], neighbour))

    if len(ordered_ids) != len(module_map):
        unresolved = sorted(module_id for module_id, degree in indegree.items() if degree > 0)
        raise TrackDefinitionError(
            f"Detected module dependency cycle involving {', '.join(unresolved)}."
        )
    return ordered_ids


def validate_track_definition(track: TrackDefinition) -> List[str]:
    """Reject malformed module graphs before they are stored.

    Returns the topological module order of a valid track.
    """
    seen: Set[str] = set()
    for module in track.modules:
        if module.module_id in seen:
            raise TrackDefinitionError(
                f"Track '{track.track_id}' defines module '{module.module_id}' more than once."
            )
        seen.add(module.module_id)
        sub_ids = [sub.id for sub in module.sub_modules]
        if len(sub_ids) != len(set(sub_ids)):
            raise TrackDefinitionError(
                f"Module '{module.module_id}' defines duplicate sub-module ids."
            )
    order = topological_order(track.modules)
    if track.modules and not entry_point_ids(track):
        raise TrackDefinitionError(f"Track '{track.track_id}' has no entry point module.")
    logger.debug("Validated track %s with order %s", track.track_id, order)
    return order


def with_explicit_entry_point(track: TrackDefinition) -> TrackDefinition:
    """Flag the implicit entry point so the track no longer depends on ordering."""
    if any(module.is_entry_point for module in track.modules):
        return track
    implicit = entry_point_ids(track)
    if not implicit:
        return track
    migrated = track.model_copy(deep=True)
    for module in migrated.modules:
        if module.module_id in implicit:
            module.is_entry_point = True
    return migrated


__all__ = [
    "DEFAULT_PASSING_THRESHOLD",
    "available_module_ids",
    "entry_point_ids",
    "linear_order",
    "newly_available",
    "passed_quiz_ids",
    "resolve_track_state",
    "topological_order",
    "track_progress_percent",
    "validate_track_definition",
    "with_explicit_entry_point",
]
