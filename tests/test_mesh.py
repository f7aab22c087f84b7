"""
Unit tests for the cylindrical mesh and the configuration checks.

Tests material clamps, fail-fast grid validation and the shared flat index.
"""

import pytest
import numpy as np
import sys
import os

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from boreholesim.config import (
    BoreholeGeometry,
    BoundaryCondition,
    GroundLayer,
    HeatExchangerType,
    SimulationOptions,
)
from boreholesim.mesh import (
    CONDUCTIVITY_RANGE,
    DENSITY_RANGE,
    SPECIFIC_HEAT_RANGE,
    CylindricalMesh,
    build_mesh,
    clamp_materials,
    flat_index,
)


def small_options(**overrides):
    settings = dict(
        radial_points=6,
        angular_points=4,
        vertical_points=8,
        domain_radius=5.0,
        domain_extension=10.0,
        simulation_time=3600.0,
    )
    settings.update(overrides)
    return SimulationOptions(**settings)


def uniform_mesh(r, n_theta, z, value=1.0):
    shape = (len(r), n_theta, len(z))
    return CylindricalMesh(
        r=np.asarray(r, dtype=float),
        theta=2.0 * np.pi * np.arange(n_theta) / n_theta,
        z=np.asarray(z, dtype=float),
        conductivity=np.full(shape, 2.5),
        density=np.full(shape, 2650.0),
        specific_heat=np.full(shape, 1000.0),
        porosity=np.full(shape, 0.1),
        permeability=np.full(shape, 1e-14),
        dispersivity=np.full(shape, value),
    )


class TestMaterialClamps:
    """Test clamping of thermal properties into the stable range."""

    def test_out_of_range_values_clamped(self):
        """Values outside the ranges are clamped, never rejected."""
        k, rho, cp = clamp_materials(
            np.array([0.0, 2.5, 50.0]),
            np.array([10.0, 2650.0, 1e5]),
            np.array([1.0, 1000.0, 1e4]),
        )
        assert k[0] == CONDUCTIVITY_RANGE[0] and k[2] == CONDUCTIVITY_RANGE[1]
        assert rho[0] == DENSITY_RANGE[0] and rho[2] == DENSITY_RANGE[1]
        assert cp[0] == SPECIFIC_HEAT_RANGE[0] and cp[2] == SPECIFIC_HEAT_RANGE[1]
        assert k[1] == 2.5 and rho[1] == 2650.0 and cp[1] == 1000.0

    def test_mesh_clamps_layer_properties(self):
        """A layer with an extreme conductivity ends up clamped in the mesh."""
        options = small_options(layers=[GroundLayer(top=0.0, bottom=50.0, conductivity=100.0)])
        mesh = build_mesh(BoreholeGeometry(), options)

        assert mesh.conductivity.max() <= CONDUCTIVITY_RANGE[1]
        assert np.all(mesh.density >= DENSITY_RANGE[0])


class TestGridValidation:
    """Test fail-fast rejection of impossible grids."""

    def test_too_few_radial_nodes(self):
        """Fewer than 3 radial nodes is rejected at configuration time."""
        with pytest.raises(ValueError, match="at least 3 radial"):
            small_options(radial_points=2)

    def test_too_few_vertical_nodes(self):
        with pytest.raises(ValueError, match="at least 3 radial"):
            small_options(vertical_points=1)

    def test_domain_inside_borehole(self):
        """A domain radius inside the borehole is rejected by the mesh builder."""
        options = small_options(domain_radius=0.05)
        with pytest.raises(ValueError, match="must exceed the borehole"):
            build_mesh(BoreholeGeometry(), options)

    def test_non_increasing_coordinates(self):
        """Radial coordinates must be strictly increasing."""
        with pytest.raises(ValueError, match="strictly increasing"):
            uniform_mesh([0.1, 0.5, 0.5, 1.0], 4, [0.0, 1.0, 2.0])

    def test_outer_neumann_rejected(self):
        """Outer radial Neumann boundary is not supported."""
        with pytest.raises(ValueError, match="Neumann"):
            small_options(outer_boundary=BoundaryCondition.NEUMANN)

    def test_coaxial_without_annulus(self):
        """A coaxial inner pipe wall that fills the annulus is rejected."""
        with pytest.raises(ValueError, match="annulus"):
            BoreholeGeometry(
                heat_exchanger_type=HeatExchangerType.COAXIAL,
                pipe_inner_diameter=0.036,
                pipe_outer_diameter=0.040,
                inner_pipe_wall_thickness=0.003,
            )


class TestFlatIndex:
    """Test the row-major flat index shared by both backends."""

    def test_matches_numpy_ravel(self):
        """flat_index addresses the same node as ndarray.ravel()."""
        shape = (5, 4, 6)
        field = np.arange(np.prod(shape), dtype=float).reshape(shape)
        flat = field.ravel()

        for i, j, k in [(0, 0, 0), (2, 3, 1), (4, 1, 5)]:
            assert flat[flat_index(i, j, k, shape[1], shape[2])] == field[i, j, k]

    def test_angular_periodicity(self):
        """Angular index n_theta wraps to node 0."""
        mesh = build_mesh(BoreholeGeometry(), small_options())
        nth = mesh.ntheta

        assert mesh.flat_index(2, nth, 3) == mesh.flat_index(2, 0, 3)
        assert mesh.flat_index(2, -1, 3) == mesh.flat_index(2, nth - 1, 3)


class TestMeshBuilder:
    """Test the built mesh coordinates and volumes."""

    def test_coordinates(self):
        """Radii start at the borehole wall, depths cover the extended domain."""
        geometry = BoreholeGeometry(depth=40.0)
        mesh = build_mesh(geometry, small_options())

        assert mesh.shape == (6, 4, 8)
        assert np.isclose(mesh.r[0], geometry.radius)
        assert np.isclose(mesh.r[-1], 5.0)
        assert mesh.z[0] == 0.0
        assert np.isclose(mesh.z[-1], 50.0)
        assert np.all(np.diff(mesh.z) > 0)

    def test_cell_volumes_fill_annulus(self):
        """Cell volumes add up to the cylindrical shell volume."""
        mesh = build_mesh(BoreholeGeometry(depth=40.0), small_options())
        expected = np.pi * (mesh.r[-1] ** 2 - mesh.r[0] ** 2) * mesh.z[-1]

        assert mesh.cell_volumes().sum() == pytest.approx(expected, rel=1e-12)

    def test_fields_are_contiguous_float64(self):
        mesh = build_mesh(BoreholeGeometry(), small_options())
        for arr in (mesh.conductivity, mesh.porosity, mesh.dispersivity):
            assert arr.dtype == np.float64
            assert arr.flags.c_contiguous
