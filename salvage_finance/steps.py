"""
Step runner for document transitions.

A transition is an ordered list of named steps (status write, journal entry, ledger
adjustment, audit row, ...). Two execution modes:

atomic (ATOMIC_TRANSITIONS = True, default)
    One transaction, one savepoint per step.
    - blocking step fails     -> everything rolled back, TransitionFailed
                                 (LifecycleError and a version conflict
                                 StaleDataError are re-raised unchanged)
    - non-blocking step fails -> only that step rolled back, the rest continues,
                                 commit, then PartiallyApplied

saga (ATOMIC_TRANSITIONS = False)
    Commit after every step. A failure after the first commit can only be reported:
    PartiallyApplied names what was written and what was not.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterable, List, Optional

from flask import current_app
from sqlalchemy.orm.exc import StaleDataError

from .errors import LifecycleError, PartiallyApplied, TransitionFailed
from .extensions import db

# Raised as they are when nothing was saved; the app maps each to its own HTTP status.
PASS_THROUGH = (LifecycleError, StaleDataError)

logger = logging.getLogger(__name__)


@dataclass
class Step:
    name: str
    run: Callable[[], Any]
    blocking: bool = True


@dataclass
class StepReport:
    completed: List[str] = field(default_factory=list)
    failed: List[str] = field(default_factory=list)
    results: Dict[str, Any] = field(default_factory=dict)


class StepRunner:
    def __init__(self, atomic: Optional[bool] = None, session=None):
        if atomic is None:
            atomic = bool(current_app.config.get("ATOMIC_TRANSITIONS", True))
        self.atomic = atomic
        self.session = session or db.session

    def run(self, label: str, steps: Iterable[Step]) -> StepReport:
        if self.atomic:
            return self._run_atomic(label, list(steps))
        return self._run_saga(label, list(steps))

    def _run_atomic(self, label: str, steps: List[Step]) -> StepReport:
        report = StepReport()

        for step in steps:
            try:
                with self.session.begin_nested():
                    report.results[step.name] = step.run()
            except Exception as exc:
                if step.blocking:
                    self.session.rollback()
                    logger.error("%s: blocking step '%s' failed, transition rolled back", label, step.name,
                                 exc_info=True)
                    if isinstance(exc, PASS_THROUGH):
                        raise
                    raise TransitionFailed(
                        f"{label}: step '{step.name}' failed: {exc}",
                        completed=report.completed,
                        failed=[step.name],
                    ) from exc
                logger.error("%s: step '%s' failed, continuing", label, step.name, exc_info=True)
                report.failed.append(step.name)
                continue
            report.completed.append(step.name)

        self.session.commit()
        self._raise_if_partial(label, report)
        return report

    def _run_saga(self, label: str, steps: List[Step]) -> StepReport:
        report = StepReport()

        for step in steps:
            try:
                report.results[step.name] = step.run()
                self.session.commit()
            except Exception as exc:
                self.session.rollback()
                logger.error("%s: step '%s' failed", label, step.name, exc_info=True)
                report.failed.append(step.name)
                if not step.blocking:
                    continue
                if not report.completed:
                    if isinstance(exc, PASS_THROUGH):
                        raise
                    raise TransitionFailed(
                        f"{label}: step '{step.name}' failed: {exc}",
                        failed=report.failed,
                    ) from exc
                raise PartiallyApplied(
                    f"{label}: step '{step.name}' failed after {', '.join(report.completed)} were saved",
                    completed=report.completed,
                    failed=report.failed,
                ) from exc
            report.completed.append(step.name)

        self._raise_if_partial(label, report)
        return report

    @staticmethod
    def _raise_if_partial(label: str, report: StepReport) -> None:
        if report.failed:
            raise PartiallyApplied(
                f"{label}: saved, but {', '.join(report.failed)} failed",
                completed=report.completed,
                failed=report.failed,
            )
