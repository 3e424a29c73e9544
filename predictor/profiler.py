"""Per-operator profiling of a single invocation.

ONNX Runtime records a Chrome-trace style JSON file when profiling is
enabled on the runtime session. Each run produces one "model_run"
session event and, per executed node, a "<node name>_kernel_time"
event with the node's op type in its args. Timestamps and durations
are in microseconds from the start of profiling.

The Profiler bounds one invocation: start() before invoke(), stop()
after it. stop() flushes the trace, keeps the kernel events inside the
last model_run window, maps node names back to graph indices, and
re-arms the plan for the next call. At most `capacity` events are kept;
the rest are dropped and counted.
"""

from __future__ import annotations

import json
import logging
import os
from collections import defaultdict
from dataclasses import dataclass, field
from typing import Any

logger = logging.getLogger(__name__)

DEFAULT_CAPACITY = 1024

_KERNEL_SUFFIX = "_kernel_time"


@dataclass
class OpEvent:
    """Timing for a single executed operator."""
    index: int           # graph-assigned node index (-1 if unknown)
    opcode: str          # ONNX op type
    duration_us: int
    name: str = ""       # node name


@dataclass
class RunProfile:
    """Profiling results from a single invocation, in execution order."""
    events: list[OpEvent] = field(default_factory=list)
    total_us: int = 0
    dropped: int = 0

    def __str__(self) -> str:
        total_ms = self.total_us / 1e3
        if not self.events:
            return f"Execution Profile:\n  Total: {total_ms:.3f} ms (no per-op breakdown)"

        by_op: dict[str, list[int]] = defaultdict(list)
        for e in self.events:
            by_op[e.opcode].append(e.duration_us)

        lines = ["Execution Profile:"]
        suffix = f", {self.dropped} dropped" if self.dropped else ""
        lines.append(f"  Total: {total_ms:.3f} ms ({len(self.events)} ops{suffix})")

        op_totals = [(op, sum(times), len(times)) for op, times in by_op.items()]
        op_totals.sort(key=lambda x: x[1], reverse=True)

        for op, op_us, n in op_totals:
            pct = op_us / self.total_us * 100 if self.total_us > 0 else 0
            lines.append(f"  {op:<20} {op_us / 1e3:8.3f} ms ({pct:5.1f}%)  {n} ops")

        return "\n".join(lines)


def parse_trace(trace: list[dict[str, Any]], node_index: dict[str, int],
                capacity: int = DEFAULT_CAPACITY) -> RunProfile:
    """Extract per-operator timings of the last run from a runtime trace.

    Args:
        trace: Decoded trace events.
        node_index: Node name -> graph-assigned index.
        capacity: Maximum number of events to keep.
    """
    runs = [e for e in trace
            if e.get("cat") == "Session" and e.get("name") == "model_run"]
    window: tuple[int, int] | None = None
    total_us = 0
    if runs:
        last = max(runs, key=lambda e: e.get("ts", 0))
        start = int(last.get("ts", 0))
        total_us = int(last.get("dur", 0))
        window = (start, start + total_us)

    kernels = []
    for e in trace:
        name = e.get("name", "")
        if e.get("cat") != "Node" or not name.endswith(_KERNEL_SUFFIX):
            continue
        ts = int(e.get("ts", 0))
        if window is not None and not (window[0] <= ts <= window[1]):
            continue
        kernels.append(e)
    kernels.sort(key=lambda e: e.get("ts", 0))

    events = []
    for e in kernels[:capacity]:
        node_name = e["name"][:-len(_KERNEL_SUFFIX)]
        events.append(OpEvent(
            index=node_index.get(node_name, -1),
            opcode=e.get("args", {}).get("op_name", "?"),
            duration_us=int(e.get("dur", 0)),
            name=node_name,
        ))

    if window is None:
        total_us = sum(ev.duration_us for ev in events)
    return RunProfile(events=events, total_us=total_us,
                      dropped=max(0, len(kernels) - capacity))


def discard_trace(path: str) -> None:
    try:
        os.remove(path)
    except OSError:
        logger.debug("Could not remove trace file %s", path)


def read_trace(path: str) -> list[dict[str, Any]]:
    """Load and delete a flushed trace file. Unreadable traces yield no events."""
    if not path:
        return []
    try:
        with open(path) as f:
            trace = json.load(f)
    except (OSError, ValueError) as exc:
        logger.warning("Could not read profile trace %s: %s", path, exc)
        return []
    finally:
        discard_trace(path)
    if isinstance(trace, dict):
        trace = trace.get("traceEvents", [])
    return trace


class Profiler:
    """Bounded per-session profiler over the runtime's trace."""

    def __init__(self, capacity: int = DEFAULT_CAPACITY) -> None:
        if capacity < 1:
            raise ValueError(f"Profiler capacity must be positive, got {capacity}")
        self.capacity = capacity
        self._active = False

    @property
    def active(self) -> bool:
        return self._active

    def start(self) -> None:
        if self._active:
            raise RuntimeError("Profiling session already started")
        self._active = True

    def stop(self, plan) -> RunProfile:
        """End the profiling session and report the last invocation."""
        if not self._active:
            raise RuntimeError("Profiling session was not started")
        self._active = False

        path = plan.end_profiling()
        try:
            trace = read_trace(path)
        finally:
            plan.restart_profiling()
        return parse_trace(trace, plan.graph.node_index(), self.capacity)
