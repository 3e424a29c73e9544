"""Session configuration.

Everything a session needs is passed at construction; there is no
process-wide mode or thread-count setter.

    config = SessionConfig(batch_size=1, backend=GPUStrategy())
    config = SessionConfig.from_mode(batch=1, mode=2, profile=True)
"""

from __future__ import annotations

from dataclasses import dataclass, field

from .backends import (
    AcceleratorStrategy, BackendStrategy, CPUStrategy, GPUStrategy, strategy_from_mode,
)
from .errors import ConfigError
from .profiler import DEFAULT_CAPACITY


@dataclass(frozen=True)
class SessionConfig:
    """Construction-time settings for a Session.

    Attributes:
        batch_size: Leading dim fed on every predict().
        backend: Hardware strategy, attached once at construction.
        quantize_input: Default for predict()'s quantize flag.
        verbose: Log per-tensor diagnostics and validation results.
        profile: Collect per-operator timing for every predict().
        profiler_capacity: Maximum profiled operators kept per call.
    """
    batch_size: int = 1
    backend: BackendStrategy = field(default_factory=CPUStrategy)
    quantize_input: bool = False
    verbose: bool = False
    profile: bool = False
    profiler_capacity: int = DEFAULT_CAPACITY

    @classmethod
    def from_mode(cls, batch: int, mode: int, verbose: bool = False,
                  profile: bool = False, quantize_input: bool = False) -> SessionConfig:
        """Build a config from the legacy integer mode arguments."""
        return cls(
            batch_size=batch,
            backend=strategy_from_mode(mode),
            quantize_input=quantize_input,
            verbose=verbose,
            profile=profile,
        )

    def validate(self) -> None:
        if isinstance(self.batch_size, bool) or not isinstance(self.batch_size, int):
            raise ConfigError(f"batch_size must be an int, got {self.batch_size!r}")
        if self.batch_size < 1:
            raise ConfigError(f"batch_size must be >= 1, got {self.batch_size}")
        if not isinstance(self.backend, (CPUStrategy, GPUStrategy, AcceleratorStrategy)):
            raise ConfigError(f"Unknown backend strategy {self.backend!r}")
        if self.profiler_capacity < 1:
            raise ConfigError(
                f"profiler_capacity must be >= 1, got {self.profiler_capacity}"
            )
