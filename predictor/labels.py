"""Top-k classification readout over session predictions.

Label files hold one class name per line; line i names class i.
"""

from dataclasses import dataclass
from pathlib import Path

import numpy as np


@dataclass(frozen=True)
class Classification:
    index: int
    label: str
    probability: float


def load_labels(path: str | Path) -> list[str]:
    with open(path) as f:
        return [line.rstrip("\n") for line in f]


def top_k(predictions: np.ndarray, labels: list[str] | None = None,
          batch_size: int = 1, k: int = 5) -> list[list[Classification]]:
    """Best `k` classes per batch item, highest probability first.

    `predictions` holds batch_size rows of equal length, flat or 2-D.
    Classes without a label are named by their index.
    """
    scores = np.asarray(predictions, dtype=np.float32).reshape(batch_size, -1)
    labels = labels or []

    results = []
    for row in scores:
        # Stable sort keeps lower class indices first among ties
        order = np.argsort(-row, kind="stable")[:k]
        results.append([
            Classification(
                index=int(i),
                label=labels[i] if i < len(labels) else str(int(i)),
                probability=float(row[i]),
            )
            for i in order
        ])
    return results
