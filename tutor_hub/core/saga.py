"""Saga runner — sequential remote writes with compensating actions.

The store offers no cross-row transaction through the REST client, so a
multi-step workflow records an undo for every completed step. When a later
step fails the undos run newest-first. Domain errors (``TutorHubError``)
propagate unchanged so callers keep their meaning; anything else is
re-raised as a ``WorkflowError``.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Callable

import structlog

from tutor_hub.core.errors import TutorHubError, WorkflowError

logger = structlog.get_logger()


@dataclass
class Saga:
    """Collects completed steps and their compensations."""

    name: str
    results: dict[str, Any] = field(default_factory=dict)
    _compensations: list[tuple[str, Callable[[], Any]]] = field(default_factory=list)

    def step(
        self,
        name: str,
        action: Callable[[], Any],
        compensate: Callable[[Any], Any] | None = None,
    ) -> Any:
        """Run ``action``; on success remember ``compensate(result)``.

        On failure every earlier compensation runs. ``TutorHubError`` is re-raised
        as-is; any other exception is wrapped in ``WorkflowError``.
        """
        try:
            result = action()
        except TutorHubError as e:
            logger.info("saga.step_rejected", saga=self.name, step=name, error=str(e))
            self.rollback()
            raise
        except Exception as e:
            logger.warning("saga.step_failed", saga=self.name, step=name, error=str(e))
            self.rollback()
            raise WorkflowError(name, e) from e

        self.results[name] = result
        if compensate is not None:
            self._compensations.append((name, lambda: compensate(result)))
        return result

    def rollback(self) -> None:
        while self._compensations:
            name, undo = self._compensations.pop()
            try:
                undo()
                logger.info("saga.compensated", saga=self.name, step=name)
            except Exception as e:
                # Left for manual reconciliation; the original failure is what callers see.
                logger.error("saga.compensation_failed", saga=self.name, step=name, error=str(e))
