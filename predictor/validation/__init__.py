"""Validation framework for the inference session.

Validators are tagged checks that run at specific session phases.
Each validator inspects an artifact (the loaded Graph or the bound
ExecutionPlan) and returns structured diagnostics.

The registry collects validators via decorator. The loader and the
backend selector run them at the appropriate points, but they work
standalone too:

    from predictor.validation import run_validators, Phase
    results = run_validators(Phase.POST_LOAD, graph, fail_on=None)

Validators are defined in submodules:
    graph.py : load-time checks on the model's input/output slots
    plan.py  : checks on the plan once bound to its backend

Core types live in core.py to avoid circular imports.
"""

from .core import (  # noqa: F401
    Phase,
    Severity,
    ValidationResult,
    ValidationError,
    Validator,
    VALIDATORS,
    log_results,
    register_validator,
    run_validators,
)

# Import submodules to trigger validator registration.
from . import graph, plan  # noqa: F401
