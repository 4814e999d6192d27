"""
Folds per-scope extraction results into one cumulative model.

Each scope may produce a deterministic and an AI candidate; choose_result
picks the winner and the reconcilers merge winners into the model under a
lock. Callers only ever see deep-copied snapshots.
"""
import copy
import threading
from typing import Optional

from loguru import logger

from models import (
    CharacterRecord,
    ScheduleDay,
    ScheduleModel,
    SceneRecord,
    ScopeResult,
    ScriptChunkResult,
    ScriptModel,
    Status,
)
from script_parser import scene_sort_key


def choose_result(candidates: list[ScopeResult], ai_wins_ties: bool = False) -> Optional[ScopeResult]:
    """
    Pick the result to keep for one scope.

    Failed candidates are ignored. The candidate with strictly more entries
    wins; on a tie the deterministic one is kept unless `ai_wins_ties`. An
    AI result is still taken when the deterministic parse found nothing.

    Returns:
        The chosen ScopeResult, or None if every candidate failed
    """
    usable = [c for c in candidates if c.error is None and (c.day is not None or c.script is not None)]
    deterministic = next((c for c in usable if c.source == "deterministic"), None)
    ai = next((c for c in usable if c.source == "ai"), None)

    if deterministic is None:
        return ai
    if ai is None:
        return deterministic
    if deterministic.entry_count == 0:
        return ai
    if ai.entry_count > deterministic.entry_count:
        return ai
    if ai.entry_count == deterministic.entry_count and ai_wins_ties:
        return ai
    return deterministic


class ScheduleReconciler:
    """
    Cumulative schedule model for one session.

    Args:
        model: Stage 1 model to build on
    """

    def __init__(self, model: ScheduleModel):
        self._model = model
        self._lock = threading.Lock()

    def fold(self, day: ScheduleDay) -> None:
        """Add or replace one day; days stay ordered by day number."""
        with self._lock:
            days = [d for d in self._model.days if d.day_number != day.day_number]
            days.append(day)
            days.sort(key=lambda d: d.day_number)
            self._model.days = days
            self._model.total_days = max(self._model.total_days, len(days))

            dangling = sorted({n for s in day.scenes for n in s.cast_numbers if n not in self._model.cast_list})
            if dangling and self._model.cast_list:
                warning = f"Day {day.day_number}: cast numbers not in cast list: {dangling}"
                self._model.warnings = [w for w in self._model.warnings
                                        if not w.startswith(f"Day {day.day_number}: cast numbers")]
                self._model.warnings.append(warning)
                logger.debug(warning)

    def warn(self, message: str) -> None:
        with self._lock:
            self._model.warnings.append(message)

    def set_status(self, status: Status) -> None:
        with self._lock:
            self._model.processing_status = status

    def snapshot(self) -> ScheduleModel:
        with self._lock:
            return copy.deepcopy(self._model)

    def finalize(self, status: Status) -> ScheduleModel:
        self.set_status(status)
        return self.snapshot()


class ScriptReconciler:
    """
    Cumulative screenplay model for one session.

    Scenes merge by scene number and characters by normalized name, so the
    overlapping tail of one chunk and the head of the next fold into the
    same records.
    """

    def __init__(self, model: ScriptModel):
        self._model = model
        self._scenes: dict[str, SceneRecord] = {s.scene_number: s for s in model.scenes}
        self._characters: dict[str, CharacterRecord] = {c.normalized_name: c for c in model.characters}
        self._lock = threading.Lock()

    def fold(self, result: ScriptChunkResult) -> None:
        with self._lock:
            for scene in result.scenes:
                existing = self._scenes.get(scene.scene_number)
                if existing is None:
                    self._scenes[scene.scene_number] = copy.deepcopy(scene)
                else:
                    existing.characters_present |= scene.characters_present
                    if existing.page_number is None:
                        existing.page_number = scene.page_number

            for character in result.characters:
                existing = self._characters.get(character.normalized_name)
                if existing is None:
                    self._characters[character.normalized_name] = copy.deepcopy(character)
                else:
                    existing.scenes_appeared |= character.scenes_appeared
                    existing.variants |= character.variants
                    existing.dialogue_count += character.dialogue_count

            self._model.scenes = sorted(self._scenes.values(), key=lambda s: scene_sort_key(s.scene_number))
            self._model.characters = sorted(self._characters.values(), key=lambda c: c.normalized_name)

    def warn(self, message: str) -> None:
        with self._lock:
            self._model.warnings.append(message)

    def set_status(self, status: Status) -> None:
        with self._lock:
            self._model.processing_status = status

    def snapshot(self) -> ScriptModel:
        with self._lock:
            return copy.deepcopy(self._model)

    def finalize(self, status: Status) -> ScriptModel:
        self.set_status(status)
        return self.snapshot()
