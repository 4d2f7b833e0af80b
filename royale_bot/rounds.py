"""Elimination schedule for a ranked battle royale pool.

All counts here are part of the auditable outcome, so the flooring and the
operand order must not change.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Final, Literal

ROUND_FRACTIONS: Final[tuple[float, ...]] = (0.30, 0.40, 0.25)
FINAL_PHASE_FRACTION: Final[float] = 0.12
PROGRESS_FRAMES: Final[int] = 5


def frame_progress(frame: int, frames: int = PROGRESS_FRAMES) -> float:
    return (frame + 1) / frames


def round_keep_count(current: int, fraction: float) -> int:
    return max(1, math.floor(current * (1 - fraction)))


def round_preview_eliminations(
    current: int, fraction: float, frame: int, frames: int = PROGRESS_FRAMES
) -> int:
    # Illustrative only; the real cut comes from round_keep_count.
    return math.floor(fraction * current * frame_progress(frame, frames))


def final_pass_eliminations(current: int) -> int:
    return max(1, math.floor(current * FINAL_PHASE_FRACTION))


def final_preview_eliminations(
    current: int, to_eliminate: int, frame: int, frames: int = PROGRESS_FRAMES
) -> int:
    return min(current - 1, math.floor(to_eliminate * frame_progress(frame, frames)))


def final_keep_count(current: int, to_eliminate: int) -> int:
    return max(1, current - to_eliminate)


@dataclass(slots=True, frozen=True)
class EliminationStep:
    index: int
    kind: Literal["round", "final"]
    number: int
    before: int
    after: int
    previews: tuple[int, ...]
    fraction: float | None = None

    @property
    def eliminated(self) -> int:
        return self.before - self.after

    @property
    def title(self) -> str:
        if self.kind == "round":
            percent = round((self.fraction or 0.0) * 100)
            return f"Round {self.number} - Eliminating {percent}% total"
        return f"Final Round - Stage {self.number}"

    @property
    def result_title(self) -> str:
        if self.kind == "round":
            return f"Round {self.number} finished"
        return f"Final Round - Stage {self.number} finished"

    @property
    def starts_phase(self) -> bool:
        """True for every fixed round and for the first final-phase pass."""
        return self.kind == "round" or self.number == 1


def plan_round(
    index: int, number: int, current: int, fraction: float, frames: int
) -> EliminationStep:
    previews = tuple(
        max(1, current - round_preview_eliminations(current, fraction, frame, frames))
        for frame in range(frames)
    )
    return EliminationStep(
        index=index,
        kind="round",
        number=number,
        before=current,
        after=round_keep_count(current, fraction),
        previews=previews,
        fraction=fraction,
    )


def plan_final_pass(index: int, number: int, current: int, frames: int) -> EliminationStep:
    to_eliminate = final_pass_eliminations(current)
    previews = tuple(
        max(1, current - final_preview_eliminations(current, to_eliminate, frame, frames))
        for frame in range(frames)
    )
    return EliminationStep(
        index=index,
        kind="final",
        number=number,
        before=current,
        after=final_keep_count(current, to_eliminate),
        previews=previews,
    )


def plan_elimination(
    pool_size: int,
    *,
    fractions: tuple[float, ...] = ROUND_FRACTIONS,
    frames: int = PROGRESS_FRAMES,
) -> list[EliminationStep]:
    """Every step from the full ranked pool down to one survivor.

    A pool of zero or one entry needs no steps. Fixed rounds stop early once a
    single survivor is left.
    """
    steps: list[EliminationStep] = []
    current = pool_size
    for number, fraction in enumerate(fractions, start=1):
        if current <= 1:
            return steps
        step = plan_round(len(steps), number, current, fraction, frames)
        steps.append(step)
        current = step.after

    stage = 0
    while current > 1:
        stage += 1
        step = plan_final_pass(len(steps), stage, current, frames)
        steps.append(step)
        current = step.after
    return steps


__all__ = [
    "EliminationStep",
    "FINAL_PHASE_FRACTION",
    "PROGRESS_FRAMES",
    "ROUND_FRACTIONS",
    "final_keep_count",
    "final_pass_eliminations",
    "final_preview_eliminations",
    "plan_elimination",
    "round_keep_count",
    "round_preview_eliminations",
]
