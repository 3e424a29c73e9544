"""Backend selection: attach a hardware execution strategy to a plan.

A strategy is one of three closed variants:

    CPUStrategy(threads)                : CPU kernels on a thread pool (1..6)
    GPUStrategy(precision_loss_allowed) : GPU execution providers
    AcceleratorStrategy()               : NPU / DSP execution providers

Attachment runs once per plan, synchronously, before the session is
handed to the caller. Delegate failures are split in two:

    creation    no provider for the delegate is available in this
                runtime build. Expected on most machines: log it and run
                on CPU. The session keeps reporting the requested strategy.
    attachment  the provider exists but the plan refuses to run on it.
                That points at a real incompatibility and is raised as
                DelegateAttachError.

Legacy integer modes map onto strategies through strategy_from_mode().
"""

from __future__ import annotations

import logging
import os
import tempfile
from dataclasses import dataclass, field
from enum import IntEnum
from itertools import count

import onnxruntime as ort

from .errors import DelegateAttachError, ErrorCode, LoadError
from .plan import ExecutionPlan, ProviderSpec
from .validation import Phase, Severity, ValidationError, log_results, run_validators

logger = logging.getLogger(__name__)

DEFAULT_CPU_THREADS = 4
MIN_CPU_THREADS = 1
MAX_CPU_THREADS = 6

CPU_PROVIDER = "CPUExecutionProvider"
GPU_PROVIDERS = (
    "TensorrtExecutionProvider",
    "CUDAExecutionProvider",
    "ROCMExecutionProvider",
    "DmlExecutionProvider",
)
ACCELERATOR_PROVIDERS = (
    "NnapiExecutionProvider",
    "CoreMLExecutionProvider",
    "QNNExecutionProvider",
)


def clamp_threads(threads: int) -> int:
    return max(MIN_CPU_THREADS, min(MAX_CPU_THREADS, int(threads)))


# ---------------------------------------------------------------------------
# Strategies
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class CPUStrategy:
    threads: int = DEFAULT_CPU_THREADS

    def __post_init__(self) -> None:
        object.__setattr__(self, "threads", clamp_threads(self.threads))

    def __str__(self) -> str:
        return f"CPU({self.threads} threads)"


@dataclass(frozen=True)
class GPUStrategy:
    precision_loss_allowed: bool = False

    def __str__(self) -> str:
        return "GPU(fp16)" if self.precision_loss_allowed else "GPU"


@dataclass(frozen=True)
class AcceleratorStrategy:
    def __str__(self) -> str:
        return "NeuralAccelerator"


BackendStrategy = CPUStrategy | GPUStrategy | AcceleratorStrategy


class BackendMode(IntEnum):
    """Legacy integer modes accepted at the handle API."""
    CPU   = 0   # default thread count
    GPU   = 1
    NNAPI = 2
    CPU_1 = 3
    CPU_2 = 4
    CPU_3 = 5
    CPU_5 = 6
    CPU_6 = 7


_MODE_THREADS: dict[int, int] = {
    BackendMode.CPU:   DEFAULT_CPU_THREADS,
    BackendMode.CPU_1: 1,
    BackendMode.CPU_2: 2,
    BackendMode.CPU_3: 3,
    BackendMode.CPU_5: 5,
    BackendMode.CPU_6: 6,
}


def strategy_from_mode(mode: int, precision_loss_allowed: bool = False) -> BackendStrategy:
    """Validate a legacy integer mode into a strategy.

    Unrecognized values select the CPU with the default thread count.
    """
    if mode == BackendMode.GPU:
        return GPUStrategy(precision_loss_allowed=precision_loss_allowed)
    if mode == BackendMode.NNAPI:
        return AcceleratorStrategy()
    threads = _MODE_THREADS.get(mode) if isinstance(mode, int) else None
    if threads is None:
        logger.debug("Unrecognized backend mode %r, using %d CPU threads",
                     mode, DEFAULT_CPU_THREADS)
        threads = DEFAULT_CPU_THREADS
    return CPUStrategy(threads=threads)


# ---------------------------------------------------------------------------
# Attachment
# ---------------------------------------------------------------------------

@dataclass
class AttachedBackend:
    """Outcome of attach(): what was asked for and what the plan runs on."""
    requested: BackendStrategy
    providers: list[str] = field(default_factory=list)
    fell_back: bool = False


_profile_ids = count()


def session_options(threads: int, profile: bool = False) -> ort.SessionOptions:
    """Runtime session options for a given thread count."""
    options = ort.SessionOptions()
    options.intra_op_num_threads = clamp_threads(threads)
    options.inter_op_num_threads = 1
    options.execution_mode = ort.ExecutionMode.ORT_SEQUENTIAL
    if profile:
        options.enable_profiling = True
        options.profile_file_prefix = os.path.join(
            tempfile.gettempdir(),
            f"predictor_profile_{os.getpid()}_{next(_profile_ids)}",
        )
    return options


def _delegate_name(strategy: BackendStrategy) -> str:
    return "GPU" if isinstance(strategy, GPUStrategy) else "neural accelerator"


def create_delegate(strategy: GPUStrategy | AcceleratorStrategy) -> list[ProviderSpec] | None:
    """Pick the delegate's providers available in this runtime build.

    Returns None when none is available (unsupported platform).
    """
    available = set(ort.get_available_providers())
    candidates = GPU_PROVIDERS if isinstance(strategy, GPUStrategy) else ACCELERATOR_PROVIDERS

    specs: list[ProviderSpec] = []
    for name in candidates:
        if name not in available:
            continue
        if name == "TensorrtExecutionProvider":
            fp16 = isinstance(strategy, GPUStrategy) and strategy.precision_loss_allowed
            specs.append((name, {"trt_fp16_enable": "True" if fp16 else "False"}))
        else:
            specs.append(name)
    return specs or None


def _provider_name(spec: ProviderSpec) -> str:
    return spec if isinstance(spec, str) else spec[0]


def _bind_cpu(plan: ExecutionPlan, threads: int, profile: bool) -> None:
    try:
        plan.bind([CPU_PROVIDER], session_options(threads, profile))
    except Exception as exc:
        raise LoadError(ErrorCode.PLAN_CONSTRUCTION_FAILED,
                        f"Runtime rejected the graph: {exc}") from exc


def attach(plan: ExecutionPlan, strategy: BackendStrategy,
           profile: bool = False, verbose: bool = False) -> AttachedBackend:
    """Bind `plan` to the hardware selected by `strategy`.

    Raises:
        DelegateAttachError: a created delegate was rejected by the plan.
        LoadError: the runtime rejected the graph on the CPU.
    """
    if plan.is_bound:
        raise RuntimeError("Backend already attached; the strategy cannot change")

    if isinstance(strategy, CPUStrategy):
        _bind_cpu(plan, strategy.threads, profile)
        attached = AttachedBackend(strategy, plan.providers)
    else:
        kind = _delegate_name(strategy)
        delegate = create_delegate(strategy)
        if delegate is None:
            logger.warning("%s acceleration is unsupported on this platform; "
                           "running on %d CPU threads", kind, DEFAULT_CPU_THREADS)
            _bind_cpu(plan, DEFAULT_CPU_THREADS, profile)
            attached = AttachedBackend(strategy, plan.providers, fell_back=True)
        else:
            names = [_provider_name(spec) for spec in delegate]
            try:
                plan.bind([*delegate, CPU_PROVIDER],
                          session_options(DEFAULT_CPU_THREADS, profile))
            except Exception as exc:
                raise DelegateAttachError(
                    f"Failed to apply {kind} delegate {names}: {exc}"
                ) from exc
            if not any(name in plan.providers for name in names):
                bound = plan.providers
                plan.release()
                raise DelegateAttachError(
                    f"Failed to apply {kind} delegate {names}: "
                    f"runtime bound to {bound}"
                )
            logger.info("Applied %s delegate (%s)", kind, ", ".join(plan.providers))
            attached = AttachedBackend(strategy, plan.providers)

    try:
        results = run_validators(Phase.POST_ATTACH, plan, fail_on=Severity.ERROR)
    except ValidationError as exc:
        plan.release()
        raise LoadError(ErrorCode.PLAN_CONSTRUCTION_FAILED, str(exc)) from exc
    log_results(results, logger, verbose)

    return attached
