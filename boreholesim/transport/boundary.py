"""
Domain boundary policies applied after every kernel iteration.

The same code runs on numpy and cupy arrays (``xp`` argument), so both
backends apply boundaries with identical assignments.
"""

from dataclasses import dataclass, replace
from typing import Optional

import numpy as np

from ..config import BoundaryCondition, SimulationOptions
from ..mesh import CylindricalMesh
from .kernel import T_MAX, T_MIN


@dataclass(eq=False)
class BoundarySpec:
    """
    Boundary values for one macro step.

    Attributes
    ----------
    outer : BoundaryCondition
        DIRICHLET or ADIABATIC at i = nr-1
    outer_values : np.ndarray
        Dirichlet temperature per depth, shape (nz,)
    top : BoundaryCondition
        DIRICHLET or ADIABATIC at k = 0
    top_value : float
    bottom : BoundaryCondition
        DIRICHLET, ADIABATIC or NEUMANN (geothermal flux) at k = nz-1
    bottom_value : float
    bottom_increment : np.ndarray
        q·dz/λ per (i, j) for the flux policy [K]
    wall_mask : np.ndarray
        True where the borehole wall (i = 0) is held at a fluid temperature,
        shape (nz,)
    wall_values : np.ndarray
        Wall Dirichlet temperature per depth, shape (nz,)
    """
    outer: BoundaryCondition
    outer_values: np.ndarray
    top: BoundaryCondition
    top_value: float
    bottom: BoundaryCondition
    bottom_value: float
    bottom_increment: np.ndarray
    wall_mask: np.ndarray
    wall_values: np.ndarray

    def with_wall(self, mask: Optional[np.ndarray], values: Optional[np.ndarray]) -> "BoundarySpec":
        """Copy with new borehole wall values; None makes the wall adiabatic."""
        nz = len(self.outer_values)
        if mask is None:
            mask = np.zeros(nz, dtype=bool)
            values = np.zeros(nz)
        return replace(
            self,
            wall_mask=np.asarray(mask, dtype=bool),
            wall_values=np.asarray(values, dtype=np.float64),
        )

    def to_device(self, xp) -> "BoundarySpec":
        """Copy whose arrays live on the array module ``xp``."""
        return replace(
            self,
            outer_values=xp.asarray(self.outer_values),
            bottom_increment=xp.asarray(self.bottom_increment),
            wall_mask=xp.asarray(self.wall_mask),
            wall_values=xp.asarray(self.wall_values),
        )


def build_boundary_spec(mesh: CylindricalMesh, options: SimulationOptions) -> BoundarySpec:
    """Domain boundary values from the options; the wall starts adiabatic."""
    if options.outer_boundary_temperature is None:
        outer_values = np.asarray(options.undisturbed_temperature(mesh.z), dtype=np.float64)
    else:
        outer_values = np.full(mesh.nz, float(options.outer_boundary_temperature))

    top_value = (
        options.surface_temperature
        if options.top_boundary_temperature is None
        else options.top_boundary_temperature
    )
    bottom_value = (
        float(options.undisturbed_temperature(mesh.z[-1]))
        if options.bottom_boundary_temperature is None
        else options.bottom_boundary_temperature
    )
    dz_bottom = mesh.z[-1] - mesh.z[-2]
    bottom_increment = options.geothermal_heat_flux * dz_bottom / mesh.conductivity[:, :, -1]

    return BoundarySpec(
        outer=options.outer_boundary,
        outer_values=outer_values,
        top=options.top_boundary,
        top_value=float(top_value),
        bottom=options.bottom_boundary,
        bottom_value=float(bottom_value),
        bottom_increment=np.ascontiguousarray(bottom_increment),
        wall_mask=np.zeros(mesh.nz, dtype=bool),
        wall_values=np.zeros(mesh.nz),
    )


def apply_boundaries(temperature, spec: BoundarySpec, xp=np) -> None:
    """
    Apply wall, outer, top and bottom policies in place.

    Parameters
    ----------
    temperature : array
        Field of shape (nr, nθ, nz) on the array module ``xp``
    spec : BoundarySpec
        Boundary values, already on ``xp``
    xp : module
        numpy or cupy
    """
    T = temperature

    # Borehole wall: fluid Dirichlet inside the exchanger, adiabatic elsewhere
    T[0] = xp.where(spec.wall_mask[None, :], spec.wall_values[None, :], T[1])

    if spec.outer == BoundaryCondition.DIRICHLET:
        T[-1] = spec.outer_values[None, :]
    else:
        T[-1] = T[-2]

    if spec.top == BoundaryCondition.DIRICHLET:
        T[:, :, 0] = spec.top_value
    else:
        T[:, :, 0] = T[:, :, 1]

    if spec.bottom == BoundaryCondition.DIRICHLET:
        T[:, :, -1] = spec.bottom_value
    elif spec.bottom == BoundaryCondition.NEUMANN:
        T[:, :, -1] = xp.clip(T[:, :, -2] + spec.bottom_increment, T_MIN, T_MAX)
    else:
        T[:, :, -1] = T[:, :, -2]
