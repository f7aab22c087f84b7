"""
Unit tests for the transport kernel, max-change reduction and backends.

Tests the per-iteration clamps, the slot reduction, stable time steps,
boundary policies, and the CPU/GPU differential on a small grid.
"""

import pytest
import numpy as np
import sys
import os

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from boreholesim.config import Backend, BoreholeGeometry, BoundaryCondition, SimulationOptions
from boreholesim.mesh import CylindricalMesh, build_mesh
from boreholesim.transport import (
    CPUTransportBackend,
    CUPY_AVAILABLE,
    GpuTransportBackend,
    MaxChangeAccumulator,
    N_SLOTS,
    StencilMetrics,
    apply_boundaries,
    build_boundary_spec,
    create_backend,
    discover_device,
    max_abs_change,
    stable_time_step,
    transport_step,
)
from boreholesim.transport.kernel import MAX_DELTA_T, T_MAX, T_MIN


def make_metrics(nr=5, nth=4, nz=5):
    r = np.geomspace(0.1, 2.0, nr)
    z = np.linspace(0.0, 10.0, nz)
    return StencilMetrics.from_coordinates(r, z, nth)


def make_mesh(nr=5, nth=4, nz=5):
    r = np.geomspace(0.1, 2.0, nr)
    z = np.linspace(0.0, 10.0, nz)
    shape = (nr, nth, nz)
    return CylindricalMesh(
        r=r,
        theta=2.0 * np.pi * np.arange(nth) / nth,
        z=z,
        conductivity=np.full(shape, 2.5),
        density=np.full(shape, 2650.0),
        specific_heat=np.full(shape, 1000.0),
        porosity=np.full(shape, 0.1),
        permeability=np.full(shape, 1e-14),
        dispersivity=np.full(shape, 0.5),
    )


class TestKernelClamps:
    """Test the per-iteration change and temperature clamps."""

    def test_change_limited_to_five_kelvin(self):
        """A hot spot with a huge time step moves by at most 5 K."""
        metrics = make_metrics()
        T = np.full(metrics.shape, 300.0)
        T[2, 1, 2] = 400.0
        alpha = np.full(metrics.shape, 1e-6)

        T_new, max_change = transport_step(T, alpha, metrics, dt=1e9)

        assert np.all(np.abs(T_new - T) <= MAX_DELTA_T + 1e-12)
        assert T_new[2, 1, 2] == pytest.approx(400.0 - MAX_DELTA_T)
        assert max_change == pytest.approx(MAX_DELTA_T)

    def test_upper_temperature_clamp(self):
        """Interior nodes never exceed 473 K."""
        metrics = make_metrics(nr=3, nth=4, nz=3)
        T = np.full(metrics.shape, 600.0)
        T[1, :, 1] = 470.0
        alpha = np.full(metrics.shape, 1e-6)

        T_new, _ = transport_step(T, alpha, metrics, dt=1e9)

        assert np.all(T_new[1, :, 1] == T_MAX), f"Expected clamp to {T_MAX}, got {T_new[1, :, 1]}"

    def test_lower_temperature_clamp(self):
        """Interior nodes never fall below 273 K."""
        metrics = make_metrics(nr=3, nth=4, nz=3)
        T = np.full(metrics.shape, 200.0)
        T[1, :, 1] = 275.0
        alpha = np.full(metrics.shape, 1e-6)

        T_new, max_change = transport_step(T, alpha, metrics, dt=1e9)

        assert np.all(T_new[1, :, 1] == T_MIN)
        assert max_change == pytest.approx(2.0)

    def test_boundary_nodes_untouched(self):
        """The kernel only writes interior nodes."""
        metrics = make_metrics()
        rng = np.random.default_rng(1)
        T = 290.0 + rng.random(metrics.shape)
        alpha = np.full(metrics.shape, 1e-6)

        T_new, _ = transport_step(T, alpha, metrics, dt=1000.0)

        assert np.array_equal(T_new[0], T[0]) and np.array_equal(T_new[-1], T[-1])
        assert np.array_equal(T_new[:, :, 0], T[:, :, 0])
        assert np.array_equal(T_new[:, :, -1], T[:, :, -1])

    def test_uniform_field_stays_uniform(self):
        metrics = make_metrics()
        T = np.full(metrics.shape, 283.15)
        alpha = np.full(metrics.shape, 1e-6)

        T_new, max_change = transport_step(T, alpha, metrics, dt=3600.0)

        assert np.allclose(T_new, 283.15, atol=1e-9)
        assert max_change < 1e-9

    def test_angular_periodicity(self):
        """A spike at θ node 0 diffuses equally to nodes 1 and nθ-1."""
        metrics = make_metrics(nth=6)
        T = np.full(metrics.shape, 300.0)
        T[2, 0, 2] = 310.0
        alpha = np.full(metrics.shape, 1e-6)

        T_new, _ = transport_step(T, alpha, metrics, dt=10.0)
        change = T_new - T

        assert change[2, 1, 2] > 0
        assert change[2, 1, 2] == pytest.approx(change[2, -1, 2], rel=1e-12)

    def test_upwind_advection_moves_heat_downstream(self):
        """Outward radial flow warms the node downstream of a hot node."""
        metrics = make_metrics()
        T = np.full(metrics.shape, 300.0)
        T[2, :, 2] = 310.0
        alpha = np.full(metrics.shape, 1e-12)
        velocity = np.zeros((3,) + metrics.shape)
        velocity[0] = 1e-5

        T_new, _ = transport_step(T, alpha, metrics, dt=100.0, velocity=velocity)

        assert T_new[3, 0, 2] > 300.0
        # Upstream node only sees its own upstream neighbour
        assert T_new[1, 0, 2] == pytest.approx(300.0, abs=1e-6)


class TestReduction:
    """Test the 256-slot max-change reduction."""

    def test_known_maximum(self):
        """The reduced scalar is the largest |ΔT| regardless of sign."""
        n = 1000
        changes = np.zeros(n)
        changes[417] = -7.5
        changes[3] = 3.21

        assert max_abs_change(np.arange(n), changes) == 7.5

    def test_collisions_keep_maximum(self):
        """Nodes sharing a slot keep the larger value."""
        indices = np.array([5, 5 + N_SLOTS, 5 + 2 * N_SLOTS])
        changes = np.array([0.1, 0.9, 0.4])

        assert max_abs_change(indices, changes) == 0.9

    def test_reset_clears_stale_maximum(self):
        """A reset accumulator does not report the previous pass."""
        acc = MaxChangeAccumulator()
        acc.record(np.array([1]), np.array([4.0]))
        acc.reset()
        acc.record(np.array([1]), np.array([0.5]))

        assert acc.reduce() == 0.5

    def test_invalid_slot_count(self):
        with pytest.raises(ValueError, match="Slot count"):
            MaxChangeAccumulator(0)


class TestStableTimeStep:
    """Test the explicit stability limit."""

    def test_diffusion_limit(self):
        """dt·weight equals the safety factor at the tightest node."""
        metrics = make_metrics()
        alpha = np.full(metrics.shape, 1e-6)

        dt = stable_time_step(alpha, metrics, safety=0.9)
        r, drm, drp, dzm, dzp = metrics.interior_views()
        weight = 1e-6 * (2.0 / (drm * drp) + 2.0 / (r * r * metrics.dtheta ** 2) + 2.0 / (dzm * dzp))

        assert dt * np.max(weight) == pytest.approx(0.9)

    def test_advection_shrinks_step(self):
        metrics = make_metrics()
        alpha = np.full(metrics.shape, 1e-6)
        velocity = np.zeros((3,) + metrics.shape)
        velocity[2] = 1e-3

        assert stable_time_step(alpha, metrics, velocity=velocity) < stable_time_step(alpha, metrics)

    def test_zero_diffusivity(self):
        """No transport means no stability limit."""
        metrics = make_metrics()
        assert stable_time_step(np.zeros(metrics.shape), metrics) == np.inf


class TestBoundaries:
    """Test the domain boundary policies."""

    def options(self, **overrides):
        settings = dict(
            radial_points=5, angular_points=4, vertical_points=6,
            domain_radius=3.0, domain_extension=5.0, simulation_time=3600.0,
            surface_temperature=283.15, geothermal_gradient=0.0,
        )
        settings.update(overrides)
        return SimulationOptions(**settings)

    def test_dirichlet_and_adiabatic(self):
        """Outer Dirichlet holds the undisturbed value; adiabatic copies the neighbour."""
        options = self.options(bottom_boundary=BoundaryCondition.ADIABATIC)
        mesh = build_mesh(BoreholeGeometry(depth=20.0), options)
        spec = build_boundary_spec(mesh, options)
        T = np.full(mesh.shape, 290.0)
        T[:, :, -2] = 295.0

        apply_boundaries(T, spec)

        assert np.all(T[-1] == 283.15)
        assert np.all(T[:-1, :, -1] == 295.0)

    def test_neumann_bottom_adds_flux_increment(self):
        options = self.options(geothermal_heat_flux=0.1)
        mesh = build_mesh(BoreholeGeometry(depth=20.0), options)
        spec = build_boundary_spec(mesh, options)
        T = np.full(mesh.shape, 290.0)

        apply_boundaries(T, spec)

        dz = mesh.z[-1] - mesh.z[-2]
        assert T[2, 0, -1] == pytest.approx(290.0 + 0.1 * dz / 2.5)

    def test_wall_dirichlet_inside_exchanger(self):
        """Masked wall depths take the fluid value, the rest are adiabatic."""
        options = self.options()
        mesh = build_mesh(BoreholeGeometry(depth=20.0), options)
        mask = np.zeros(mesh.nz, dtype=bool)
        mask[:3] = True
        spec = build_boundary_spec(mesh, options).with_wall(mask, np.full(mesh.nz, 280.0))
        T = np.full(mesh.shape, 290.0)

        apply_boundaries(T, spec)

        assert np.all(T[0, :, 1:3] == 280.0)
        assert np.all(T[0, :, 3:-1] == 290.0)


class TestBackends:
    """Test backend selection and the CPU/GPU differential."""

    def test_cpu_backend_selected(self):
        mesh = make_mesh()
        backend = create_backend(mesh, Backend.CPU)
        assert isinstance(backend, CPUTransportBackend)

    def test_auto_without_device_uses_cpu(self):
        """AUTO falls back to the numpy kernel when no device is found."""
        if discover_device() is not None:
            pytest.skip("CUDA device present")
        backend = create_backend(make_mesh(), Backend.AUTO)
        assert isinstance(backend, CPUTransportBackend)

    @pytest.mark.skipif(
        CUPY_AVAILABLE and discover_device() is not None,
        reason="CUDA device present",
    )
    def test_forced_gpu_without_device_uses_cpu(self):
        """Forcing the GPU without CuPy or a device warns and returns the numpy kernel."""
        with pytest.warns(RuntimeWarning, match="GPU backend unavailable"):
            backend = create_backend(make_mesh(), Backend.GPU)
        assert isinstance(backend, CPUTransportBackend)

    def test_cpu_backend_matches_kernel(self):
        """The backend is a thin wrapper over transport_step."""
        mesh = make_mesh()
        rng = np.random.default_rng(7)
        T = 280.0 + 20.0 * rng.random(mesh.shape)

        with CPUTransportBackend(mesh) as backend:
            backend.upload(T)
            dt = backend.stable_time_step(0.9)
            change = backend.iterate(dt)
            result = backend.download()

        expected, expected_change = transport_step(T, mesh.diffusivity(), StencilMetrics.from_mesh(mesh), dt)
        assert np.array_equal(result, expected)
        assert change == expected_change

    @pytest.mark.skipif(
        not CUPY_AVAILABLE or discover_device() is None,
        reason="CuPy or CUDA device not available",
    )
    def test_gpu_matches_cpu(self):
        """Both backends agree on a 5x4x5 grid within 1e-12 K."""
        mesh = make_mesh()
        rng = np.random.default_rng(3)
        T = 280.0 + 20.0 * rng.random(mesh.shape)
        velocity = 1e-6 * rng.standard_normal((3,) + mesh.shape)
        dispersion = np.full(mesh.shape, 1e-7)

        results = []
        for cls in (CPUTransportBackend, GpuTransportBackend):
            with cls(mesh) as backend:
                backend.set_transport_fields(velocity, dispersion)
                backend.upload(T)
                dt = backend.stable_time_step(0.9)
                changes = [backend.iterate(dt) for _ in range(3)]
                results.append((backend.download(), changes))

        (T_cpu, c_cpu), (T_gpu, c_gpu) = results
        assert np.allclose(T_cpu, T_gpu, rtol=0.0, atol=1e-12)
        assert np.allclose(c_cpu, c_gpu, rtol=0.0, atol=1e-12)

    @pytest.mark.skipif(
        not CUPY_AVAILABLE or discover_device() is None,
        reason="CuPy or CUDA device not available",
    )
    def test_gpu_close_releases_own_buffers(self):
        """close() drops this backend's buffers and leaves other backends usable."""
        mesh = make_mesh()
        T = np.full(mesh.shape, 290.0)
        other = GpuTransportBackend(mesh)
        other.upload(T)

        backend = GpuTransportBackend(mesh)
        backend.close()
        backend.close()

        assert backend._buffers == {}
        with pytest.raises(RuntimeError, match="closed"):
            backend.upload(T)
        assert np.array_equal(other.download(), T)
        other.close()
