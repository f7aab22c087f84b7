"""
Adaptive mesh refinement indicator.

Tracks a per-node refinement level on the base cylindrical mesh. Nodes are
flagged for refinement where the temperature, pressure or saturation gradient
exceeds its threshold, near the borehole axis, or inside the thermal front
band; other refined nodes are coarsened. Neighbouring levels differ by at most
one. The levels drive the effective spacing reported for each node; the shared
fields are left untouched.
"""

import logging
from typing import Dict

import numpy as np

from ..config import AMRParams, SimulationOptions
from ..mesh import CylindricalMesh
from ..state import SimulationState
from .base import PhysicsModule, StepContext

logger = logging.getLogger(__name__)

MAX_SMOOTHING_SWEEPS = 5


def gradient_magnitude(field: np.ndarray, mesh: CylindricalMesh) -> np.ndarray:
    """
    |∇f| by central differences on interior nodes (periodic in θ); zero on
    the radial and vertical boundary planes.
    """
    f = np.asarray(field, dtype=np.float64)
    r = mesh.r[1:-1, None, None]
    dr = (mesh.r[2:] - mesh.r[:-2])[:, None, None]
    dz = (mesh.z[2:] - mesh.z[:-2])[None, None, :]

    inner = f[1:-1, :, 1:-1]
    d_r = (f[2:, :, 1:-1] - f[:-2, :, 1:-1]) / dr
    d_t = (np.roll(inner, -1, axis=1) - np.roll(inner, 1, axis=1)) / (2.0 * r * mesh.dtheta)
    d_z = (f[1:-1, :, 2:] - f[1:-1, :, :-2]) / dz

    out = np.zeros_like(f)
    out[1:-1, :, 1:-1] = np.sqrt(d_r ** 2 + d_t ** 2 + d_z ** 2)
    return out


def _neighbours(a: np.ndarray):
    """The six face neighbours of every node; edges repeat the node itself."""
    padded = np.pad(a, ((1, 1), (0, 0), (1, 1)), mode="edge")
    core = (slice(1, -1), slice(None), slice(1, -1))
    yield padded[2:, :, 1:-1]
    yield padded[:-2, :, 1:-1]
    yield padded[1:-1, :, 2:]
    yield padded[1:-1, :, :-2]
    yield np.roll(padded[core], -1, axis=1)
    yield np.roll(padded[core], 1, axis=1)


def smooth_refinement(levels: np.ndarray, refine: np.ndarray, max_level: int) -> np.ndarray:
    """
    Extend refinement flags until no refining node would sit more than one
    level above a neighbour, for at most MAX_SMOOTHING_SWEEPS sweeps.

    Returns
    -------
    np.ndarray
        Updated refinement flags
    """
    refine = refine.copy()
    can_refine = levels < max_level
    for _ in range(MAX_SMOOTHING_SWEEPS):
        target = levels + refine
        needed = np.zeros_like(refine)
        for nb_target, nb_refine in zip(_neighbours(target), _neighbours(refine)):
            needed |= nb_refine & (nb_target - target > 1)
        needed &= can_refine & ~refine
        if not needed.any():
            break
        refine |= needed
    return refine


class AdaptiveMeshRefinement(PhysicsModule):
    """
    Refinement level tracker.

    Parameters
    ----------
    params : AMRParams
        Thresholds, borehole radius, maximum level and interval
    mesh : CylindricalMesh
        Base mesh
    options : SimulationOptions
        Undisturbed temperature used as the front reference
    """

    name = "amr"
    reads = ("temperature", "pressure", "saturation")
    writes = ()

    def __init__(self, params: AMRParams, mesh: CylindricalMesh, options: SimulationOptions):
        super().__init__()
        self.params = params
        self.mesh = mesh
        self.levels = np.zeros(mesh.shape, dtype=np.int64)
        self.initial_temperature = np.broadcast_to(
            np.asarray(options.undisturbed_temperature(mesh.z))[None, None, :], mesh.shape
        )
        self.near_borehole = np.broadcast_to(
            (mesh.r < params.borehole_refinement_radius)[:, None, None], mesh.shape
        )
        self.refined_last = 0
        self.coarsened_last = 0

    def is_due(self, step: int) -> bool:
        return (step + 1) % self.params.refinement_interval == 0

    def front_region(self, temperature: np.ndarray, injection_temperature: float) -> np.ndarray:
        """Nodes between 10 % and 90 % of the way from the initial to the injection temperature."""
        delta = injection_temperature - self.initial_temperature
        with np.errstate(divide="ignore", invalid="ignore"):
            progress = np.where(np.abs(delta) >= 1.0, (temperature - self.initial_temperature) / delta, 0.0)
        return (progress > self.params.front_lower) & (progress < self.params.front_upper)

    def update_state(self, state: SimulationState, dt: float, context: StepContext) -> Dict[str, np.ndarray]:
        p = self.params
        grad_T = gradient_magnitude(state.temperature, self.mesh)
        grad_P = gradient_magnitude(state.pressure, self.mesh)
        grad_S = gradient_magnitude(state.saturation, self.mesh)

        high_gradient = (
            (grad_T > p.temperature_gradient_threshold)
            | (grad_P > p.pressure_gradient_threshold)
            | (grad_S > p.saturation_gradient_threshold)
        )
        injection = context.boundary.inlet_temperature if context.boundary is not None else None
        front = (
            self.front_region(state.temperature, injection)
            if injection is not None
            else np.zeros(self.mesh.shape, dtype=bool)
        )
        critical = high_gradient | self.near_borehole | front

        interior = np.zeros(self.mesh.shape, dtype=bool)
        interior[1:-1, :, 1:-1] = True

        levels = self.levels
        refine = interior & critical & (levels < p.max_refinement_level)
        refine = smooth_refinement(levels, refine, p.max_refinement_level)

        # Coarsen only where no neighbour ends up more than one level above
        refined_target = levels + refine
        neighbour_max = np.max(np.stack(list(_neighbours(refined_target))), axis=0)
        coarsen = interior & ~critical & ~refine & (levels > 0) & (neighbour_max <= levels)

        new_levels = levels + refine.astype(np.int64) - coarsen.astype(np.int64)
        n_refined, n_coarsened = int(refine.sum()), int(coarsen.sum())
        if n_refined or n_coarsened:
            logger.debug("AMR step %d: refined %d nodes, coarsened %d", context.step, n_refined, n_coarsened)

        self.stage(levels=new_levels, refined_last=n_refined, coarsened_last=n_coarsened)
        return {}

    def effective_spacing(self):
        """
        Effective (dr, dθ, dz) per node: base spacing halved per level.

        Returns
        -------
        tuple of np.ndarray
            Each of shape (nr, nθ, nz) [m, rad, m]
        """
        mesh = self.mesh
        dr = np.diff(mesh.r)
        dz = np.diff(mesh.z)
        dr = np.concatenate((dr, [dr[-1]]))[:, None, None]
        dz = np.concatenate((dz, [dz[-1]]))[None, None, :]
        factor = 2.0 ** (-self.levels.astype(np.float64))
        return dr * factor, mesh.dtheta * factor, dz * factor

    def get_diagnostics(self) -> Dict[str, float]:
        diag = super().get_diagnostics()
        diag["refined_nodes"] = float(np.count_nonzero(self.levels))
        diag["max_level"] = float(self.levels.max())
        diag["mean_level"] = float(self.levels.mean())
        diag["refined_last_pass"] = float(self.refined_last)
        diag["coarsened_last_pass"] = float(self.coarsened_last)
        return diag
