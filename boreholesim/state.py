"""
Run state machine and the immutable per-step simulation snapshot.
"""

from dataclasses import dataclass, replace
from enum import Enum

import numpy as np

# Fields a physics module may declare as read or written
SHARED_FIELDS = (
    "temperature",
    "pressure",
    "saturation",
    "mineral_volume_fraction",
    "porosity",
    "permeability",
)


class RunState(Enum):
    """Orchestrator lifecycle states."""
    IDLE = "idle"
    STEPPING = "stepping"
    ITERATING = "iterating"
    CONVERGED = "converged"
    DIVERGED = "diverged"
    COMPLETED = "completed"
    FAILED = "failed"


def _frozen_copy(array) -> np.ndarray:
    out = np.array(array, dtype=np.float64, copy=True, order="C")
    out.flags.writeable = False
    return out


@dataclass(frozen=True, eq=False)
class SimulationState:
    """
    Snapshot of the shared fields after one pipeline stage.

    Arrays are read-only copies of shape (nr, nθ, nz). A stage never edits a
    snapshot; it builds the next one with :meth:`replace`.

    Attributes
    ----------
    temperature : np.ndarray
        Ground temperature [K]
    pressure : np.ndarray
        Pore pressure [Pa]
    saturation : np.ndarray
        Water saturation [-]
    mineral_volume_fraction : np.ndarray
        Precipitated mineral volume per bulk volume [-]
    porosity : np.ndarray
        Porosity [-]
    permeability : np.ndarray
        Intrinsic permeability [m²]
    time : float
        Elapsed simulated time [s]
    step : int
        Completed macro steps
    iterations : int
        Cumulative kernel iterations
    """
    temperature: np.ndarray
    pressure: np.ndarray
    saturation: np.ndarray
    mineral_volume_fraction: np.ndarray
    porosity: np.ndarray
    permeability: np.ndarray
    time: float = 0.0
    step: int = 0
    iterations: int = 0

    def __post_init__(self):
        shape = np.shape(self.temperature)
        for name in SHARED_FIELDS:
            arr = _frozen_copy(getattr(self, name))
            if arr.shape != shape:
                raise ValueError(f"Field '{name}' has shape {arr.shape}, expected {shape}")
            object.__setattr__(self, name, arr)

    def replace(self, **changes) -> "SimulationState":
        """Return a new snapshot with the given fields or counters replaced."""
        return replace(self, **changes)

    def field(self, name: str) -> np.ndarray:
        """Shared field by name."""
        if name not in SHARED_FIELDS:
            raise KeyError(f"Unknown shared field '{name}'")
        return getattr(self, name)

    def is_finite(self) -> bool:
        """True when the temperature field holds no NaN or Inf."""
        return bool(np.all(np.isfinite(self.temperature)))

