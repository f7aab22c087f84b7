"""
Groundwater flow field for advective heat transport.

The hydraulic head varies linearly with depth between the configured top and
bottom heads. Darcy flux follows from Darcy's law with the hydraulic
conductivity of water-saturated ground,

    K = k · ρ_w · g / μ_w,        q = -K ∇h + q_regional

where the regional flux (x, y, z) is rotated into (r, θ) components at each
node. Heat travels with the thermal velocity v = q · (ρc)_w / (ρc)_ground.
Mechanical dispersion is D = α_L · |v| and the grid Péclet number is
Pe = |v| · min(dr, dz) / α.
"""

import logging
from dataclasses import dataclass

import numpy as np

from ..config import SimulationOptions
from ..mesh import CylindricalMesh

logger = logging.getLogger(__name__)

GRAVITY = 9.81  # m/s²


@dataclass(eq=False)
class GroundwaterField:
    """
    Flow quantities on the mesh.

    Attributes
    ----------
    hydraulic_head : np.ndarray
        [m], shape (nr, nθ, nz)
    darcy_flux : np.ndarray
        (q_r, q_θ, q_z) [m/s], shape (3, nr, nθ, nz)
    velocity : np.ndarray
        Thermal advection velocity (v_r, v_θ, v_z) [m/s], shape (3, nr, nθ, nz)
    dispersion : np.ndarray
        Mechanical dispersion coefficient [m²/s]
    peclet : np.ndarray
        Grid Péclet number [-]
    permeability : np.ndarray
        Permeability the field was computed from [m²]
    """
    hydraulic_head: np.ndarray
    darcy_flux: np.ndarray
    velocity: np.ndarray
    dispersion: np.ndarray
    peclet: np.ndarray
    permeability: np.ndarray

    def is_stale(self, permeability: np.ndarray) -> bool:
        """True when the permeability changed since the field was computed."""
        return not np.array_equal(self.permeability, permeability)

    @property
    def average_peclet(self) -> float:
        """Mean of the positive grid Péclet numbers (0 when there is no flow)."""
        positive = self.peclet[self.peclet > 0]
        return float(positive.mean()) if positive.size else 0.0


def _grid_lengths(mesh: CylindricalMesh) -> np.ndarray:
    """min(dr, dz) per node using the backward spacing (forward at index 0)."""
    dr = np.diff(mesh.r)
    dz = np.diff(mesh.z)
    L_r = np.concatenate(([dr[0]], dr))
    L_z = np.concatenate(([dz[0]], dz))
    return np.minimum(L_r[:, None, None], L_z[None, None, :])


def compute_groundwater_field(
    mesh: CylindricalMesh,
    options: SimulationOptions,
    permeability: np.ndarray,
) -> GroundwaterField:
    """
    Build the groundwater field for the current permeability.

    Parameters
    ----------
    mesh : CylindricalMesh
        Grid, thermal properties and dispersivity
    options : SimulationOptions
        Heads, regional flux and water properties
    permeability : np.ndarray
        Intrinsic permeability [m²], shape (nr, nθ, nz)

    Returns
    -------
    GroundwaterField
    """
    k = np.asarray(permeability, dtype=np.float64)
    shape = mesh.shape
    depth_total = mesh.z[-1]

    head_z = options.hydraulic_head_top + (
        options.hydraulic_head_bottom - options.hydraulic_head_top
    ) * mesh.z / depth_total
    head = np.broadcast_to(head_z[None, None, :], shape).copy()
    dh_dz = (options.hydraulic_head_bottom - options.hydraulic_head_top) / depth_total

    K = k * options.fluid_density * GRAVITY / options.fluid_viscosity

    qx, qy, qz = options.groundwater_velocity
    cos_t = np.cos(mesh.theta)[None, :, None]
    sin_t = np.sin(mesh.theta)[None, :, None]

    flux = np.zeros((3,) + shape)
    flux[0] = qx * cos_t + qy * sin_t
    flux[1] = -qx * sin_t + qy * cos_t
    flux[2] = -K * dh_dz + qz

    ratio = options.fluid_density * options.fluid_specific_heat / mesh.volumetric_heat_capacity()
    velocity = flux * ratio[None]
    speed = np.sqrt(np.sum(velocity ** 2, axis=0))

    dispersion = mesh.dispersivity * speed
    peclet = speed * _grid_lengths(mesh) / mesh.diffusivity()

    logger.info(
        "Groundwater field: max |v|=%.3e m/s, max Pe=%.3g", float(speed.max()), float(peclet.max())
    )
    return GroundwaterField(
        hydraulic_head=head,
        darcy_flux=flux,
        velocity=velocity,
        dispersion=dispersion,
        peclet=peclet,
        permeability=k.copy(),
    )
