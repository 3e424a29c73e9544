"""Validation types, the per-phase registry, and the runner.

Submodules register their checks against core; __init__ imports them so
registration happens on package import.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable


class Phase(Enum):
    """Where in session construction a validator runs, and what it receives.

        POST_LOAD    predictor.ir.Graph, operators resolved, shapes inferred
        POST_ATTACH  predictor.plan.ExecutionPlan, bound to its providers
    """
    POST_LOAD   = "post_load"
    POST_ATTACH = "post_attach"


class Severity(Enum):
    """Ordered most to least severe; `rank` compares them.

    ERROR stops session construction. WARNING means the session is built
    but predict() will raise for this model. INFO is diagnostic only.
    """
    ERROR   = 0
    WARNING = 1
    INFO    = 2

    @property
    def rank(self) -> int:
        return self.value

    def at_least(self, other: Severity) -> bool:
        return self.rank <= other.rank


@dataclass(frozen=True)
class ValidationResult:
    validator: str
    severity: Severity
    message: str
    subject: str = ""    # tensor or provider the message is about, if any

    def __str__(self) -> str:
        where = f" ({self.subject})" if self.subject else ""
        return f"[{self.severity.name}] {self.validator}{where}: {self.message}"


class ValidationError(Exception):
    """A phase produced results at or above the failure severity."""

    def __init__(self, phase: Phase, results: list[ValidationResult],
                 fail_on: Severity = Severity.ERROR) -> None:
        self.phase = phase
        self.results = results
        self.fatal = [r for r in results if r.severity.at_least(fail_on)]
        lines = [f"Validation failed at {phase.name}: "
                 f"{len(self.fatal)} {fail_on.name.lower()}-level result(s)"]
        lines += [f"  {r}" for r in self.fatal]
        super().__init__("\n".join(lines))


# ---------------------------------------------------------------------------
# Registry
# ---------------------------------------------------------------------------

Check = Callable[[Any], list[ValidationResult]]


@dataclass(frozen=True)
class Validator:
    name: str
    phase: Phase
    check: Check


VALIDATORS: dict[Phase, list[Validator]] = {phase: [] for phase in Phase}


def register_validator(name: str, phase: Phase) -> Callable[[Check], Check]:
    """Register `fn` to run at `phase`, in import order.

        @register_validator("input_layout", Phase.POST_LOAD)
        def validate_input_layout(graph: Graph) -> list[ValidationResult]:
            ...
    """
    def decorator(fn: Check) -> Check:
        if any(v.name == name for v in VALIDATORS[phase]):
            raise ValueError(f"Validator '{name}' already registered for {phase.name}")
        VALIDATORS[phase].append(Validator(name, phase, fn))
        return fn
    return decorator


def run_validators(
    phase: Phase,
    target: Any,
    *,
    fail_on: Severity | None = Severity.ERROR,
) -> list[ValidationResult]:
    """Run every validator registered for `phase` against `target`.

    Raises ValidationError when a result is at least as severe as
    `fail_on`. With fail_on=None all results are returned.
    """
    results = [r for v in VALIDATORS[phase] for r in v.check(target)]
    if fail_on is not None and any(r.severity.at_least(fail_on) for r in results):
        raise ValidationError(phase, results, fail_on)
    return results


def log_results(results: list[ValidationResult], logger: logging.Logger,
                verbose: bool = False) -> None:
    """Warnings always go to `logger`; INFO results only when verbose."""
    for r in results:
        if r.severity is Severity.INFO:
            if verbose:
                logger.info("%s", r)
        else:
            logger.warning("%s", r)
