"""Completion orchestration: the only stateful boundary of the progression engine.

Each command runs a read-modify-write cycle against the progression store.
The store rejects stale writes with :class:`ConflictError`; the whole cycle
is then replayed from fresh reads, up to ``completion_retry_limit`` times.
"""

from __future__ import annotations

import logging
import threading
from typing import TYPE_CHECKING, Callable, Dict, List, Optional, Sequence, TypeVar

from pydantic import BaseModel, Field

from .config import get_settings
from .criteria import BadgeEligibility, explain_badge, resolve_new_badges
from .errors import BadgeAlreadyEarnedError, ConflictError, LockedError, NotFoundError
from .module_state import (
    DEFAULT_PASSING_THRESHOLD,
    available_module_ids,
    newly_available,
    resolve_track_state,
    track_progress_percent,
)
from .roadmap import (
    AwardSource,
    AwardedBadge,
    BadgeDef,
    CompletionResult,
    ModuleDef,
    ModuleResolution,
    QuizAttempt,
    TrackDefinition,
    TrackProgress,
    UserStatsSnapshot,
)
from .stores import InMemoryProgressionStore, LearnerSeedStore, ProgressionStore, QuizAttemptSource
from .telemetry import emit_event

if TYPE_CHECKING:
    from .config import Settings

logger = logging.getLogger(__name__)

T = TypeVar("T")


class TrackStateView(BaseModel):
    """Read-only rendering payload for one learner's track."""

    user_id: str
    track_id: str
    modules: Dict[str, ModuleResolution] = Field(default_factory=dict)
    available_modules: List[str] = Field(default_factory=list)
    progress_percent: float = 0.0


def _award(badge: BadgeDef, source: AwardSource) -> AwardedBadge:
    return AwardedBadge(
        badge_id=badge.badge_id,
        name=badge.name,
        rarity=badge.rarity,
        source=source,
        rewards=badge.rewards.model_copy(deep=True),
    )


def _reward_totals(badges: Sequence[AwardedBadge]) -> tuple[int, int, Dict[str, int]]:
    xp = 0
    coins = 0
    power_ups: Dict[str, int] = {}
    for badge in badges:
        xp += badge.rewards.xp
        coins += badge.rewards.coins
        for power_up in badge.rewards.power_ups:
            power_ups[power_up.type] = power_ups.get(power_up.type, 0) + power_up.quantity
    return xp, coins, power_ups


class CompletionOrchestrator:
    """Validates completion commands, updates progress and issues rewards."""

    def __init__(
        self,
        store: ProgressionStore,
        attempts: Optional[QuizAttemptSource] = None,
        *,
        retry_limit: int = 3,
        passing_threshold: float = DEFAULT_PASSING_THRESHOLD,
    ) -> None:
        if retry_limit < 1:
            raise ValueError("retry_limit must be at least 1.")
        self._store = store
        self._attempts = attempts
        self._retry_limit = retry_limit
        self._passing_threshold = passing_threshold

    @property
    def store(self) -> ProgressionStore:
        return self._store

    # ------------------------------------------------------------------
    # Read path
    # ------------------------------------------------------------------

    def track_state(self, user_id: str, track_id: str) -> TrackStateView:
        track = self._store.load_track_def(track_id)
        self._store.get_learner(user_id)
        progress = self._store.load_track_progress(user_id, track_id)
        resolutions = resolve_track_state(
            track,
            progress,
            attempts=self._track_attempts(user_id, track),
            passing_threshold=self._passing_threshold,
        )
        return TrackStateView(
            user_id=user_id,
            track_id=track_id,
            modules=resolutions,
            available_modules=available_module_ids(resolutions),
            progress_percent=track_progress_percent(resolutions),
        )

    def badge_eligibility(self, user_id: str, badge_id: str) -> BadgeEligibility:
        badge = self._store.load_badge_def(badge_id)
        stats = self._store.load_user_stats(user_id)
        return explain_badge(badge, stats)

    # ------------------------------------------------------------------
    # Commands
    # ------------------------------------------------------------------

    def complete_sub_module(
        self,
        user_id: str,
        track_id: str,
        module_id: str,
        sub_module_id: str,
    ) -> CompletionResult:
        def _cycle() -> CompletionResult:
            track, module = self._load_module(track_id, module_id)
            sub_module = module.sub_module(sub_module_id)
            if sub_module is None:
                raise NotFoundError(f"Sub-module '{sub_module_id}' was not found in module '{module_id}'.")
            stats = self._store.load_user_stats(user_id)
            progress = self._store.load_track_progress(user_id, track_id)
            if progress.is_sub_module_completed(module_id, sub_module_id):
                return CompletionResult(
                    user_id=user_id,
                    track_id=track_id,
                    progress=progress,
                    already_completed=True,
                )

            resolution = resolve_track_state(track, progress)[module_id]
            self._ensure_unlocked(user_id, track_id, resolution, sub_module_id=sub_module_id)

            updated = progress.model_copy(deep=True)
            updated.completed_sub_modules.append((module_id, sub_module_id))
            result = self._finalize(
                track,
                stats,
                updated,
                base_xp=sub_module.xp_value,
            )
            emit_event(
                "submodule_completed",
                user_id=user_id,
                track_id=track_id,
                module_id=module_id,
                sub_module_id=sub_module_id,
                xp_awarded=result.xp_awarded,
                badge_ids=[badge.badge_id for badge in result.new_badges],
            )
            return result

        return self._with_retry("complete_sub_module", user_id, track_id, _cycle)

    def complete_module(self, user_id: str, track_id: str, module_id: str) -> CompletionResult:
        def _cycle() -> CompletionResult:
            track, module = self._load_module(track_id, module_id)
            stats = self._store.load_user_stats(user_id)
            progress = self._store.load_track_progress(user_id, track_id)
            if progress.is_module_completed(module_id):
                return CompletionResult(
                    user_id=user_id,
                    track_id=track_id,
                    progress=progress,
                    already_completed=True,
                )

            before = resolve_track_state(track, progress)
            self._ensure_unlocked(user_id, track_id, before[module_id])

            updated = progress.model_copy(deep=True)
            updated.completed_modules.append(module_id)
            unlocked = newly_available(before, resolve_track_state(track, updated))
            for candidate in unlocked:
                if candidate not in updated.unlocked_modules:
                    updated.unlocked_modules.append(candidate)

            result = self._finalize(
                track,
                stats,
                updated,
                base_xp=module.xp_reward,
                completed_module=module,
                newly_unlocked=unlocked,
            )
            emit_event(
                "module_completed",
                user_id=user_id,
                track_id=track_id,
                module_id=module_id,
                xp_awarded=result.xp_awarded,
                badge_ids=[badge.badge_id for badge in result.new_badges],
            )
            if unlocked:
                emit_event("modules_unlocked", user_id=user_id, track_id=track_id, module_ids=unlocked)
            return result

        return self._with_retry("complete_module", user_id, track_id, _cycle)

    def grant_badge(self, user_id: str, badge_id: str) -> AwardedBadge:
        """Administrator grant; bypasses criteria, including manual-only badges."""

        def _cycle() -> AwardedBadge:
            badge = self._store.load_badge_def(badge_id)
            stats = self._store.load_user_stats(user_id)
            if badge_id in stats.earned_badge_ids:
                raise BadgeAlreadyEarnedError(f"User '{user_id}' already holds badge '{badge_id}'.")
            awarded = _award(badge, "manual")
            xp, coins, power_ups = _reward_totals([awarded])
            self._store.save_rewards(
                user_id,
                xp_delta=xp,
                coins_delta=coins,
                new_badges=[awarded],
                power_ups_delta=power_ups,
                expected_learner_version=stats.version,
            )
            emit_event("badge_granted_manually", user_id=user_id, badge_id=badge_id, xp=xp, coins=coins)
            return awarded

        return self._with_retry("grant_badge", user_id, None, _cycle)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _load_module(self, track_id: str, module_id: str) -> tuple[TrackDefinition, ModuleDef]:
        track = self._store.load_track_def(track_id)
        module = track.module(module_id)
        if module is None:
            raise NotFoundError(f"Module '{module_id}' was not found in track '{track_id}'.")
        return track, module

    def _ensure_unlocked(
        self,
        user_id: str,
        track_id: str,
        resolution: ModuleResolution,
        *,
        sub_module_id: Optional[str] = None,
    ) -> None:
        if resolution.state != "locked":
            return
        emit_event(
            "completion_rejected",
            user_id=user_id,
            track_id=track_id,
            module_id=resolution.module_id,
            sub_module_id=sub_module_id,
            missing_prerequisites=resolution.missing_prerequisites,
        )
        raise LockedError(
            f"Module '{resolution.module_id}' is locked; complete its prerequisites first.",
            module_id=resolution.module_id,
            missing_prerequisites=resolution.missing_prerequisites,
        )

    def _finalize(
        self,
        track: TrackDefinition,
        stats: UserStatsSnapshot,
        updated: TrackProgress,
        *,
        base_xp: int,
        completed_module: Optional[ModuleDef] = None,
        newly_unlocked: Optional[List[str]] = None,
    ) -> CompletionResult:
        snapshot = stats.with_track_progress(
            track,
            updated,
            just_completed_module_id=completed_module.module_id if completed_module else None,
        )
        badges = self._store.load_badge_defs()
        awarded: List[AwardedBadge] = []

        if completed_module is not None and completed_module.badge_id:
            badge_id = completed_module.badge_id
            if badge_id not in snapshot.earned_badge_ids:
                definition = next((badge for badge in badges if badge.badge_id == badge_id), None)
                if definition is None:
                    logger.warning(
                        "Module %s grants undefined badge %s; awarding without rewards.",
                        completed_module.module_id,
                        badge_id,
                    )
                    definition = BadgeDef(badge_id=badge_id, name=badge_id)
                awarded.append(_award(definition, "module"))
                snapshot.earned_badge_ids.add(badge_id)

        awarded.extend(_award(badge, "criteria") for badge in resolve_new_badges(badges, snapshot))

        badge_xp, coins, power_ups = _reward_totals(awarded)
        xp_total = base_xp + badge_xp
        saved = self._store.save_progress_and_rewards(
            stats.user_id,
            track.track_id,
            updated,
            xp_delta=xp_total,
            coins_delta=coins,
            new_badges=awarded,
            power_ups_delta=power_ups,
            expected_learner_version=stats.version,
        )
        for badge in awarded:
            emit_event(
                "badge_awarded",
                user_id=stats.user_id,
                track_id=track.track_id,
                badge_id=badge.badge_id,
                source=badge.source,
            )
        return CompletionResult(
            user_id=stats.user_id,
            track_id=track.track_id,
            progress=saved,
            new_badges=awarded,
            xp_awarded=xp_total,
            coins_awarded=coins,
            newly_unlocked_modules=list(newly_unlocked or []),
        )

    def _with_retry(
        self,
        operation: str,
        user_id: str,
        track_id: Optional[str],
        cycle: Callable[[], T],
    ) -> T:
        last_error: Optional[ConflictError] = None
        for attempt in range(1, self._retry_limit + 1):
            try:
                return cycle()
            except ConflictError as exc:
                last_error = exc
                logger.info(
                    "Write conflict during %s for user=%s track=%s (attempt %s/%s): %s",
                    operation,
                    user_id,
                    track_id,
                    attempt,
                    self._retry_limit,
                    exc,
                )
                emit_event(
                    "completion_conflict_retry",
                    operation=operation,
                    user_id=user_id,
                    track_id=track_id,
                    attempt=attempt,
                )
        raise ConflictError(
            f"{operation} for '{user_id}' kept conflicting after {self._retry_limit} attempts; resubmit."
        ) from last_error

    def _track_attempts(self, user_id: str, track: TrackDefinition) -> List[QuizAttempt]:
        if self._attempts is None:
            return []
        quiz_ids = dict.fromkeys(quiz_id for module in track.modules for quiz_id in module.quiz_ids)
        attempts: List[QuizAttempt] = []
        for quiz_id in quiz_ids:
            attempts.extend(self._attempts.get_attempts(user_id, quiz_id))
        return attempts


memory_store = InMemoryProgressionStore()

_orchestrator: Optional[CompletionOrchestrator] = None
_orchestrator_lock = threading.Lock()


def build_orchestrator(settings: "Settings") -> CompletionOrchestrator:
    store: ProgressionStore
    attempts: QuizAttemptSource
    if not settings.uses_database:
        store = memory_store
        attempts = memory_store
    else:
        from .repositories.progression import progression_repository

        store = progression_repository
        attempts = progression_repository
    return CompletionOrchestrator(
        store,
        attempts,
        retry_limit=settings.completion_retry_limit,
        passing_threshold=settings.quiz_passing_threshold,
    )


def get_orchestrator() -> CompletionOrchestrator:
    global _orchestrator
    with _orchestrator_lock:
        if _orchestrator is None:
            _orchestrator = build_orchestrator(get_settings())
        return _orchestrator


def get_learner_store() -> LearnerSeedStore:
    if not get_settings().uses_database:
        return memory_store
    from .repositories.progression import progression_repository

    return progression_repository


def reset_orchestrator() -> None:
    global _orchestrator
    with _orchestrator_lock:
        _orchestrator = None


__all__ = [
    "CompletionOrchestrator",
    "TrackStateView",
    "build_orchestrator",
    "get_learner_store",
    "get_orchestrator",
    "memory_store",
    "reset_orchestrator",
]
