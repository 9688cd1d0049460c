"""Bounded fix-and-verify loop for a single target file.

The loop is an explicit state machine so the iteration cap and the
termination predicate can be inspected and tested in isolation::

    PENDING -> VERIFYING -> SUCCEEDED
                         -> RETRYING -> VERIFYING
                         -> EXHAUSTED

``SUCCEEDED``, ``EXHAUSTED`` and ``ABORTED`` are terminal. ``ABORTED`` is
entered from ``VERIFYING`` or ``RETRYING`` when a step raises; the exception
still propagates. A fix is only generated after a failed verification, never
proactively.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Optional

LOGGER = logging.getLogger(__name__)


class RetryState(str, Enum):
    """States of a single fix-and-verify loop."""

    PENDING = "pending"
    VERIFYING = "verifying"
    RETRYING = "retrying"
    SUCCEEDED = "succeeded"
    EXHAUSTED = "exhausted"
    ABORTED = "aborted"

    @property
    def terminal(self) -> bool:
        return self in (RetryState.SUCCEEDED, RetryState.EXHAUSTED, RetryState.ABORTED)


_TRANSITIONS: dict[RetryState, frozenset[RetryState]] = {
    RetryState.PENDING: frozenset({RetryState.VERIFYING}),
    RetryState.VERIFYING: frozenset(
        {RetryState.SUCCEEDED, RetryState.RETRYING, RetryState.EXHAUSTED, RetryState.ABORTED}
    ),
    RetryState.RETRYING: frozenset({RetryState.VERIFYING, RetryState.ABORTED}),
    RetryState.SUCCEEDED: frozenset(),
    RetryState.EXHAUSTED: frozenset(),
    RetryState.ABORTED: frozenset(),
}


class InvalidTransitionError(RuntimeError):
    """Raised when the loop attempts a transition the state machine forbids."""


@dataclass(slots=True, frozen=True)
class Verification:
    """Outcome of one verification run."""

    success: bool
    output: str = ""


@dataclass(slots=True)
class FixAttempt:
    """Mutable record of a single item's progress through the loop."""

    target_path: str
    attempt_count: int = 0
    succeeded: bool = False
    state: RetryState = RetryState.PENDING
    history: list[RetryState] = field(default_factory=lambda: [RetryState.PENDING])
    last_output: str = ""

    @property
    def terminal(self) -> bool:
        return self.state.terminal

    def transition(self, target: RetryState) -> None:
        """Move to ``target`` if the state machine allows it."""
        if target not in _TRANSITIONS[self.state]:
            raise InvalidTransitionError(
                f"{self.target_path}: cannot move from {self.state.value} to {target.value}"
            )
        self.state = target
        self.history.append(target)
        if target is RetryState.SUCCEEDED:
            self.succeeded = True


Verifier = Callable[[], Verification]
Fixer = Callable[[Verification], None]


class RetryController:
    """Drive ``fix`` and ``verify`` for one target until success or ``cap`` fixes."""

    def __init__(self, target_path: str, *, verify: Verifier, fix: Fixer, cap: int) -> None:
        if cap < 1:
            raise ValueError(f"Retry cap must be at least 1, got {cap}")
        self._target_path = target_path
        self._verify = verify
        self._fix = fix
        self._cap = cap
        self._attempt: Optional[FixAttempt] = None

    @property
    def cap(self) -> int:
        return self._cap

    @property
    def attempt(self) -> Optional[FixAttempt]:
        """Return the record of the most recent ``run``, even if it raised."""
        return self._attempt

    def run(self, initial: Optional[Verification] = None) -> FixAttempt:
        """Run the loop to a terminal state.

        ``initial`` stands in for the first verification when the caller
        already knows the target is failing, so no command runs before the
        first fix. If ``verify`` or ``fix`` raises, the record is moved to
        ``ABORTED`` and the exception propagates.
        """
        attempt = FixAttempt(target_path=self._target_path)
        self._attempt = attempt
        try:
            return self._drive(attempt, initial)
        except Exception:
            if not attempt.terminal:
                attempt.transition(RetryState.ABORTED)
            raise

    def _drive(self, attempt: FixAttempt, initial: Optional[Verification]) -> FixAttempt:
        pending: Optional[Verification] = initial
        while True:
            attempt.transition(RetryState.VERIFYING)
            if pending is not None:
                verification, pending = pending, None
            else:
                verification = self._verify()
            attempt.last_output = verification.output

            if verification.success:
                attempt.transition(RetryState.SUCCEEDED)
                LOGGER.info("%s succeeded after %d fix attempt(s)", self._target_path, attempt.attempt_count)
                return attempt

            if attempt.attempt_count >= self._cap:
                attempt.transition(RetryState.EXHAUSTED)
                LOGGER.info("%s still failing after %d fix attempt(s)", self._target_path, attempt.attempt_count)
                return attempt

            attempt.transition(RetryState.RETRYING)
            LOGGER.info(
                "Generating fix %d/%d for %s", attempt.attempt_count + 1, self._cap, self._target_path
            )
            self._fix(verification)
            attempt.attempt_count += 1


__all__ = [
    "FixAttempt",
    "Fixer",
    "InvalidTransitionError",
    "RetryController",
    "RetryState",
    "Verification",
    "Verifier",
]
