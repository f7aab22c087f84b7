"""
Structured cylindrical grid around a single borehole.

Nodes are indexed (i, j, k) over (r, θ, z). Radial nodes start at the
borehole wall and are logarithmically spaced, angular nodes are uniform and
periodic, vertical nodes are cosine-clustered towards the surface and the
domain bottom. Every field is a C-contiguous float64 array of shape
(nr, nθ, nz), so ``field.ravel()[flat_index(i, j, k, nθ, nz)]`` addresses the
same node on the CPU and the GPU.
"""

import logging
from dataclasses import dataclass
from typing import Tuple

import numpy as np

from .config import BoreholeGeometry, SimulationOptions

logger = logging.getLogger(__name__)

# Material clamps keeping the explicit scheme in a stable range
CONDUCTIVITY_RANGE = (0.1, 10.0)      # W/(m·K)
DENSITY_RANGE = (500.0, 5000.0)       # kg/m³
SPECIFIC_HEAT_RANGE = (100.0, 5000.0)  # J/(kg·K)


def flat_index(i, j, k, n_theta: int, n_z: int):
    """
    Row-major flat index shared by the CPU and GPU kernels.

    Parameters
    ----------
    i, j, k : int or np.ndarray
        Radial, angular and vertical node indices
    n_theta : int
        Number of angular nodes
    n_z : int
        Number of vertical nodes

    Returns
    -------
    int or np.ndarray
        ``(i * n_theta + j) * n_z + k``
    """
    return (i * n_theta + j) * n_z + k


def wrap_angular(j, n_theta: int):
    """Periodic angular index: node n_theta is node 0."""
    return j % n_theta


def clamp_materials(
    conductivity: np.ndarray,
    density: np.ndarray,
    specific_heat: np.ndarray,
) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
    """
    Clamp material arrays into their stable ranges.

    Out-of-range values are silently clamped, never rejected.
    """
    return (
        np.clip(np.asarray(conductivity, dtype=np.float64), *CONDUCTIVITY_RANGE),
        np.clip(np.asarray(density, dtype=np.float64), *DENSITY_RANGE),
        np.clip(np.asarray(specific_heat, dtype=np.float64), *SPECIFIC_HEAT_RANGE),
    )


def radial_coordinates(r_min: float, r_max: float, n_r: int) -> np.ndarray:
    """Logarithmically spaced radii from the borehole wall to the domain edge."""
    if r_min <= 0 or r_max <= r_min:
        raise ValueError(f"Invalid radial extent: r_min={r_min}, r_max={r_max}")
    return np.geomspace(r_min, r_max, n_r)


def vertical_coordinates(total_depth: float, n_z: int) -> np.ndarray:
    """Cosine-clustered depths, fine near the surface and the domain bottom."""
    if total_depth <= 0:
        raise ValueError("Domain depth must be positive")
    t = np.linspace(0.0, 1.0, n_z)
    z = 0.5 * total_depth * (1.0 - np.cos(np.pi * t))
    z[0], z[-1] = 0.0, total_depth
    return z


@dataclass(eq=False)
class CylindricalMesh:
    """
    Cylindrical grid with per-node material arrays.

    Attributes
    ----------
    r : np.ndarray
        Radial coordinates [m], strictly increasing, r[0] = borehole wall
    theta : np.ndarray
        Angular coordinates [rad], uniform on [0, 2π)
    z : np.ndarray
        Depths [m], strictly increasing, z[0] = 0
    conductivity, density, specific_heat : np.ndarray
        Clamped thermal properties, shape (nr, nθ, nz)
    porosity, permeability, dispersivity : np.ndarray
        Hydraulic properties, shape (nr, nθ, nz)
    """
    r: np.ndarray
    theta: np.ndarray
    z: np.ndarray
    conductivity: np.ndarray
    density: np.ndarray
    specific_heat: np.ndarray
    porosity: np.ndarray
    permeability: np.ndarray
    dispersivity: np.ndarray

    def __post_init__(self):
        if len(self.r) < 3 or len(self.theta) < 1 or len(self.z) < 3:
            raise ValueError(
                f"Mesh needs nr >= 3, nθ >= 1, nz >= 3 (got {len(self.r)}, "
                f"{len(self.theta)}, {len(self.z)})"
            )
        if np.any(np.diff(self.r) <= 0):
            raise ValueError("Radial coordinates must be strictly increasing")
        if np.any(np.diff(self.z) <= 0):
            raise ValueError("Vertical coordinates must be strictly increasing")
        self.conductivity, self.density, self.specific_heat = clamp_materials(
            self.conductivity, self.density, self.specific_heat
        )
        for name in ("conductivity", "density", "specific_heat", "porosity",
                     "permeability", "dispersivity"):
            arr = np.ascontiguousarray(getattr(self, name), dtype=np.float64)
            if arr.shape != self.shape:
                raise ValueError(f"{name} has shape {arr.shape}, expected {self.shape}")
            setattr(self, name, arr)

    @property
    def nr(self) -> int:
        return len(self.r)

    @property
    def ntheta(self) -> int:
        return len(self.theta)

    @property
    def nz(self) -> int:
        return len(self.z)

    @property
    def shape(self) -> Tuple[int, int, int]:
        return (len(self.r), len(self.theta), len(self.z))

    @property
    def size(self) -> int:
        return len(self.r) * len(self.theta) * len(self.z)

    @property
    def dtheta(self) -> float:
        """Angular spacing [rad]."""
        return 2.0 * np.pi / len(self.theta)

    def flat_index(self, i, j, k):
        """Row-major flat index of node (i, j, k)."""
        return flat_index(i, wrap_angular(j, self.ntheta), k, self.ntheta, self.nz)

    def diffusivity(self) -> np.ndarray:
        """Thermal diffusivity α = λ/(ρ·cp) [m²/s]."""
        return self.conductivity / (self.density * self.specific_heat)

    def volumetric_heat_capacity(self) -> np.ndarray:
        """ρ·cp [J/(m³·K)]."""
        return self.density * self.specific_heat

    def cell_volumes(self) -> np.ndarray:
        """
        Control volume of every node [m³].

        Radial and vertical faces sit halfway between nodes; boundary nodes
        own a half cell.
        """
        r_faces = np.concatenate(([self.r[0]], 0.5 * (self.r[1:] + self.r[:-1]), [self.r[-1]]))
        z_faces = np.concatenate(([self.z[0]], 0.5 * (self.z[1:] + self.z[:-1]), [self.z[-1]]))
        ring = 0.5 * self.dtheta * (r_faces[1:] ** 2 - r_faces[:-1] ** 2)
        height = np.diff(z_faces)
        return np.broadcast_to(
            ring[:, None, None] * height[None, None, :], self.shape
        ).copy()

    def nearest_depth_index(self, depth: float) -> int:
        """Index of the vertical node closest to depth."""
        return int(np.argmin(np.abs(self.z - depth)))


def _fill_layers(mesh_z: np.ndarray, options: SimulationOptions, shape):
    """Per-node ground property arrays from uniform values and layers."""
    values = {
        "conductivity": np.full(shape, options.ground_conductivity),
        "density": np.full(shape, options.ground_density),
        "specific_heat": np.full(shape, options.ground_specific_heat),
        "porosity": np.full(shape, options.ground_porosity),
        "permeability": np.full(shape, options.ground_permeability),
    }
    for layer in options.layers:
        in_layer = (mesh_z >= layer.top) & (mesh_z < layer.bottom)
        if not np.any(in_layer):
            logger.debug("Layer %.1f-%.1f m contains no mesh nodes", layer.top, layer.bottom)
            continue
        for name in values:
            values[name][:, :, in_layer] = getattr(layer, name)
    return values


def build_mesh(geometry: BoreholeGeometry, options: SimulationOptions) -> CylindricalMesh:
    """
    Build the cylindrical mesh for a borehole.

    Parameters
    ----------
    geometry : BoreholeGeometry
        Borehole dimensions
    options : SimulationOptions
        Grid sizes, domain extent and ground properties

    Returns
    -------
    CylindricalMesh
        Mesh with clamped material arrays

    Raises
    ------
    ValueError
        If the node counts or the domain extent are structurally impossible
    """
    nr, nth, nz = options.grid_shape
    if options.domain_radius <= geometry.radius:
        raise ValueError(
            f"Domain radius ({options.domain_radius} m) must exceed the borehole "
            f"radius ({geometry.radius} m)"
        )

    r = radial_coordinates(geometry.radius, options.domain_radius, nr)
    theta = 2.0 * np.pi * np.arange(nth) / nth
    z = vertical_coordinates(geometry.depth + options.domain_extension, nz)
    shape = (nr, nth, nz)

    props = _fill_layers(z, options, shape)
    mesh = CylindricalMesh(
        r=r,
        theta=theta,
        z=z,
        dispersivity=np.full(shape, options.longitudinal_dispersivity),
        **props,
    )
    logger.info(
        "Built %dx%dx%d mesh: r=[%.3f, %.1f] m, depth=%.1f m",
        nr, nth, nz, r[0], r[-1], z[-1],
    )
    return mesh
