"""Minimal saga runtime for multi-system provisioning.

A saga is a sequence of forward steps against independent systems. Each step
may declare a compensating action. When a step fails, the compensations of
every step that already completed run concurrently, each one tolerating its
own failure, and then the original error propagates unchanged. Cancellation
(a request deadline) is treated the same way: completed steps are compensated
under a shield before the CancelledError continues.

Example:
    saga = Saga("provision demo")
    repo = await saga.run(Step(
        "create_repository",
        action=lambda: host.create_repo(name),
        compensate=lambda repo: host.delete_repo(repo.name),
    ))
    await saga.run(Step("dns", action=..., compensate=...))
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any

_LOG = logging.getLogger(__name__)


@dataclass
class Step:
    """One forward step of a saga.

    Attributes:
        name: Short identifier used in logs and rollback reports.
        action: Coroutine factory performing the forward work.
        compensate: Optional coroutine factory undoing the step. Receives the
            value returned by ``action``.
    """

    name: str
    action: Callable[[], Awaitable[Any]]
    compensate: Callable[[Any], Awaitable[Any]] | None = None


@dataclass
class Outcome:
    """Result of one settled coroutine: exactly one of value/error is meaningful."""

    value: Any = None
    error: BaseException | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


async def settle_all(calls: dict[str, Awaitable[Any]]) -> dict[str, Outcome]:
    """Run awaitables concurrently and wait for all of them.

    No individual failure cancels or fails the others.

    Args:
        calls: Mapping of name -> awaitable.

    Returns:
        Mapping of name -> Outcome, in the same order as ``calls``.
    """
    names = list(calls)
    results = await asyncio.gather(*calls.values(), return_exceptions=True)
    outcomes: dict[str, Outcome] = {}
    for name, result in zip(names, results):
        if isinstance(result, asyncio.CancelledError):
            raise result
        if isinstance(result, BaseException):
            outcomes[name] = Outcome(error=result)
        else:
            outcomes[name] = Outcome(value=result)
    return outcomes


@dataclass
class Saga:
    """Executes steps in order and rolls back completed ones on failure.

    Attributes:
        name: Label for log messages.
        completed: Steps that finished, paired with their results.
        rollback_failures: Compensation errors from the last rollback, by step name.
    """

    name: str
    completed: list[tuple[Step, Any]] = field(default_factory=list)
    rollback_failures: dict[str, BaseException] = field(default_factory=dict)

    async def run(self, step: Step) -> Any:
        """Execute one step; on failure roll back and re-raise the original error."""
        _LOG.info("[%s] step %s", self.name, step.name)
        try:
            result = await step.action()
        except asyncio.CancelledError:
            # Deadline or client disconnect: compensate before letting it through
            _LOG.warning("[%s] step %s cancelled", self.name, step.name)
            await asyncio.shield(self.rollback())
            raise
        except Exception as e:
            _LOG.warning("[%s] step %s failed: %s", self.name, step.name, e)
            await self.rollback()
            raise
        self.completed.append((step, result))
        return result

    async def rollback(self) -> dict[str, Outcome]:
        """Run every completed step's compensation concurrently.

        Compensation failures are logged and recorded in ``rollback_failures``
        but never raised.
        """
        calls = {
            step.name: step.compensate(result)
            for step, result in reversed(self.completed)
            if step.compensate is not None
        }
        self.completed = []
        if not calls:
            return {}

        _LOG.info("[%s] rolling back: %s", self.name, ", ".join(calls))
        outcomes = await settle_all(calls)
        for step_name, outcome in outcomes.items():
            if outcome.ok:
                _LOG.info("[%s] compensated %s", self.name, step_name)
            else:
                self.rollback_failures[step_name] = outcome.error
                _LOG.warning(
                    "[%s] compensation for %s failed: %s",
                    self.name, step_name, outcome.error,
                )
        return outcomes
