"""
Numpy transport backend.

Holds the authoritative temperature field in host memory and exposes the same
interface as :class:`boreholesim.transport.gpu.GpuTransportBackend`, so the
orchestrator drives either one without knowing which it has.
"""

import logging
from typing import Optional

import numpy as np

from ..mesh import CylindricalMesh
from .boundary import BoundarySpec, apply_boundaries
from .kernel import StencilMetrics, stable_time_step, transport_step
from .reduction import MaxChangeAccumulator

logger = logging.getLogger(__name__)


class CPUTransportBackend:
    """
    CPU transport backend (vectorised numpy kernel).

    Parameters
    ----------
    mesh : CylindricalMesh
        Grid and material arrays
    """

    name = "cpu"

    def __init__(self, mesh: CylindricalMesh):
        self.metrics = StencilMetrics.from_mesh(mesh)
        self.shape = mesh.shape
        self._alpha = mesh.diffusivity()
        self._velocity: Optional[np.ndarray] = None
        self._dispersion: Optional[np.ndarray] = None
        self._temperature = np.zeros(self.shape, dtype=np.float64)
        self._accumulator = MaxChangeAccumulator()
        self._boundaries: Optional[BoundarySpec] = None
        logger.info("CPU transport backend ready (%d nodes)", mesh.size)

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()
        return False

    def close(self) -> None:
        """Nothing to release; kept for interface parity with the GPU backend."""

    @property
    def array_module(self):
        return np

    @property
    def device_temperature(self) -> np.ndarray:
        return self._temperature

    def set_diffusivity(self, alpha: np.ndarray) -> None:
        self._alpha = np.ascontiguousarray(alpha, dtype=np.float64)

    def set_transport_fields(self, velocity=None, dispersion=None) -> None:
        self._velocity = None if velocity is None else np.ascontiguousarray(velocity, dtype=np.float64)
        self._dispersion = None if dispersion is None else np.ascontiguousarray(dispersion, dtype=np.float64)

    def upload(self, temperature: np.ndarray) -> None:
        self._temperature = np.array(temperature, dtype=np.float64, copy=True, order="C")

    def download(self) -> np.ndarray:
        return self._temperature.copy()

    def stable_time_step(self, safety: float) -> float:
        return stable_time_step(self._alpha, self.metrics, self._velocity, self._dispersion, safety)

    def iterate(self, dt: float) -> float:
        """One kernel pass; returns the reduced max change."""
        self._temperature, max_change = transport_step(
            self._temperature,
            self._alpha,
            self.metrics,
            dt,
            velocity=self._velocity,
            dispersion=self._dispersion,
            accumulator=self._accumulator,
        )
        return max_change

    def set_boundaries(self, spec: BoundarySpec) -> None:
        self._boundaries = spec

    def apply_boundaries(self) -> None:
        if self._boundaries is None:
            raise RuntimeError("Boundary values not set")
        apply_boundaries(self._temperature, self._boundaries, xp=np)
