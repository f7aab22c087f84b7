"""
Physics module interface and the ordered per-step pipeline.

Each module declares the shared fields it reads and writes. The pipeline
hands every module the snapshot produced by the stage before it, validates the
returned writes, and builds the next snapshot from them. A module that raises
or returns non-finite values is skipped for the step and keeps the private
state it had before the step.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence, Tuple

import numpy as np

from ..config import BoreholeGeometry, SimulationOptions
from ..mesh import CylindricalMesh
from ..state import SHARED_FIELDS, SimulationState

logger = logging.getLogger(__name__)


@dataclass
class StepContext:
    """
    Read-only inputs a module may use besides the shared fields.

    Attributes
    ----------
    step : int
        Index of the macro step being completed (0-based)
    time : float
        Simulated time at the end of the step [s]
    mesh : CylindricalMesh
    geometry : BoreholeGeometry
    options : SimulationOptions
    boundary : BoundaryValues
        Loads applied during the step
    fluid : FluidCirculationState
        Fluid legs solved for the step
    groundwater : GroundwaterField, optional
        Darcy/thermal velocity field when groundwater flow is simulated
    """
    step: int
    time: float
    mesh: CylindricalMesh
    geometry: BoreholeGeometry
    options: SimulationOptions
    boundary: Any = None
    fluid: Any = None
    groundwater: Any = None


class PhysicsModule(ABC):
    """
    Base class for an optional physics stage.

    Subclasses set ``name``, ``reads`` and ``writes``, implement
    :meth:`update_state` and report scalars from :meth:`get_diagnostics`.
    Private state computed during a step is staged with :meth:`stage` and only
    becomes current once the pipeline accepts the step's writes.
    """

    name: str = "module"
    reads: Tuple[str, ...] = ()
    writes: Tuple[str, ...] = ()

    def __init__(self):
        self.failures = 0
        self.last_error: Optional[str] = None
        self._staged: Dict[str, Any] = {}

    def is_due(self, step: int) -> bool:
        """Whether the module runs on this step."""
        return True

    @abstractmethod
    def update_state(self, state: SimulationState, dt: float, context: StepContext) -> Dict[str, np.ndarray]:
        """
        Advance the module by one macro step.

        Parameters
        ----------
        state : SimulationState
            Snapshot produced by the previous stage (read-only)
        dt : float
            Macro step [s]
        context : StepContext
            Mesh, options, loads and fluid state for the step

        Returns
        -------
        dict
            Field name -> new array, for fields in ``writes`` only
        """

    def get_diagnostics(self) -> Dict[str, float]:
        """Scalar diagnostics for the results tables."""
        return {"failures": float(self.failures)}

    def stage(self, **attributes) -> None:
        """Hold private state updates until the step is accepted."""
        self._staged.update(attributes)

    def commit(self) -> None:
        for name, value in self._staged.items():
            setattr(self, name, value)
        self._staged = {}

    def discard(self) -> None:
        self._staged = {}


def _check_writes(module: PhysicsModule, writes: Dict[str, np.ndarray], shape) -> Dict[str, np.ndarray]:
    if writes is None:
        return {}
    unknown = set(writes) - set(module.writes)
    if unknown:
        raise ValueError(f"{module.name} wrote undeclared fields: {sorted(unknown)}")
    checked = {}
    for name, value in writes.items():
        arr = np.asarray(value, dtype=np.float64)
        if arr.shape != shape:
            raise ValueError(f"{module.name} wrote '{name}' with shape {arr.shape}, expected {shape}")
        if not np.all(np.isfinite(arr)):
            raise FloatingPointError(f"{module.name} wrote non-finite values to '{name}'")
        checked[name] = arr
    return checked


@dataclass
class PipelineReport:
    """Which modules ran, were skipped or failed on one step."""
    ran: List[str] = field(default_factory=list)
    skipped: List[str] = field(default_factory=list)
    failed: Dict[str, str] = field(default_factory=dict)


class PhysicsPipeline:
    """
    Fixed-order sequence of physics modules over one state handle.

    Parameters
    ----------
    modules : sequence of PhysicsModule
        Stages in execution order
    """

    def __init__(self, modules: Sequence[PhysicsModule]):
        for module in modules:
            bad = (set(module.reads) | set(module.writes)) - set(SHARED_FIELDS)
            if bad:
                raise ValueError(f"{module.name} declares unknown fields: {sorted(bad)}")
        self.modules = list(modules)

    def __iter__(self):
        return iter(self.modules)

    def __len__(self):
        return len(self.modules)

    def run(self, state: SimulationState, dt: float, context: StepContext) -> Tuple[SimulationState, PipelineReport]:
        """
        Run every due module in order.

        Returns
        -------
        tuple
            (final snapshot, report)
        """
        report = PipelineReport()
        shape = state.temperature.shape
        for module in self.modules:
            if not module.is_due(context.step):
                report.skipped.append(module.name)
                continue
            try:
                writes = _check_writes(module, module.update_state(state, dt, context), shape)
            except Exception as e:
                module.discard()
                module.failures += 1
                module.last_error = f"{type(e).__name__}: {e}"
                report.failed[module.name] = module.last_error
                logger.warning(
                    "Module %s failed on step %d and was skipped: %s", module.name, context.step, module.last_error
                )
                continue
            module.commit()
            if writes:
                state = state.replace(**writes)
            report.ran.append(module.name)
        return state, report
