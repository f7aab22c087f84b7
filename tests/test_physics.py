"""
Unit tests for the physics pipeline and modules.

Tests module failure isolation, the seasonal load provider, heat pump
performance, AMR smoothing, reactive transport and the groundwater field.
"""

import pytest
import numpy as np
import sys
import os

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from boreholesim.borehole import FluidCirculationState
from boreholesim.config import (
    AMRParams,
    BoreholeGeometry,
    FluidCompositionEntry,
    FractureParams,
    HVACParams,
    MultiphaseParams,
    SimulationOptions,
)
from boreholesim.mesh import build_mesh
from boreholesim.orchestrator import initial_state
from boreholesim.physics import (
    AdaptiveMeshRefinement,
    BoundaryValues,
    ConstantBoundaryProvider,
    EnhancedHVAC,
    FracturedMediaModule,
    HeatPumpPerformance,
    MultiphaseModule,
    PhysicsModule,
    PhysicsPipeline,
    ReactiveTransportModule,
    StepContext,
    TimeVaryingBC,
    build_pipeline,
    compute_groundwater_field,
    simple_cop,
)
from boreholesim.physics.amr import smooth_refinement
from boreholesim.physics.fractured import shape_factor


def small_setup(**overrides):
    settings = dict(
        radial_points=6,
        angular_points=4,
        vertical_points=8,
        domain_radius=5.0,
        domain_extension=10.0,
        simulation_time=86400.0,
    )
    settings.update(overrides)
    options = SimulationOptions(**settings)
    geometry = BoreholeGeometry(depth=40.0)
    mesh = build_mesh(geometry, options)
    return geometry, options, mesh


def make_context(geometry, options, mesh, step=0, boundary=None, fluid=None):
    return StepContext(
        step=step,
        time=3600.0 * (step + 1),
        mesh=mesh,
        geometry=geometry,
        options=options,
        boundary=boundary,
        fluid=fluid,
    )


def fluid_state(inlet, outlet, heat_rate, active=True):
    return FluidCirculationState(
        depths=np.array([0.0, 40.0]),
        down=np.array([inlet, outlet]),
        up=np.array([outlet, outlet]),
        inlet_temperature=inlet,
        outlet_temperature=outlet,
        mass_flow=0.5 if active else 0.0,
        heat_rate=heat_rate,
        active=active,
    )


class FailingModule(PhysicsModule):
    """Stages private state, then raises."""

    name = "failing"
    writes = ("temperature",)

    def __init__(self):
        super().__init__()
        self.counter = 0

    def update_state(self, state, dt, context):
        self.stage(counter=self.counter + 1)
        raise RuntimeError("solver blew up")


class NaNModule(PhysicsModule):
    name = "nan_writer"
    writes = ("temperature",)

    def update_state(self, state, dt, context):
        T = np.array(state.temperature, copy=True)
        T[1, 0, 1] = np.nan
        return {"temperature": T}


class WarmingModule(PhysicsModule):
    name = "warming"
    reads = ("temperature",)
    writes = ("temperature",)

    def __init__(self):
        super().__init__()
        self.calls = 0

    def update_state(self, state, dt, context):
        self.stage(calls=self.calls + 1)
        return {"temperature": state.temperature + 1.0}


class UndeclaredWriter(PhysicsModule):
    name = "undeclared"
    writes = ()

    def update_state(self, state, dt, context):
        return {"porosity": np.zeros(state.temperature.shape)}


class TestPipeline:
    """Test ordered execution and failure isolation."""

    def test_failing_module_skipped(self):
        """A raising module is skipped; later modules still run."""
        geometry, options, mesh = small_setup()
        state = initial_state(mesh, options)
        failing, warming = FailingModule(), WarmingModule()
        pipeline = PhysicsPipeline([failing, warming])

        new_state, report = pipeline.run(state, 3600.0, make_context(geometry, options, mesh))

        assert "failing" in report.failed
        assert report.ran == ["warming"]
        assert failing.failures == 1
        assert "solver blew up" in failing.last_error
        assert np.allclose(new_state.temperature, state.temperature + 1.0)

    def test_failed_module_keeps_private_state(self):
        """Staged updates of a failed module are discarded."""
        geometry, options, mesh = small_setup()
        failing = FailingModule()
        pipeline = PhysicsPipeline([failing])
        state = initial_state(mesh, options)

        for step in range(3):
            pipeline.run(state, 3600.0, make_context(geometry, options, mesh, step=step))

        assert failing.counter == 0
        assert failing.failures == 3

    def test_non_finite_write_rejected(self):
        """NaN output skips the module and leaves the field untouched."""
        geometry, options, mesh = small_setup()
        state = initial_state(mesh, options)
        module = NaNModule()

        new_state, report = PhysicsPipeline([module]).run(state, 3600.0, make_context(geometry, options, mesh))

        assert "nan_writer" in report.failed
        assert "non-finite" in report.failed["nan_writer"]
        assert new_state is state
        assert new_state.is_finite()

    def test_undeclared_write_rejected(self):
        geometry, options, mesh = small_setup()
        state = initial_state(mesh, options)

        _, report = PhysicsPipeline([UndeclaredWriter()]).run(state, 3600.0, make_context(geometry, options, mesh))

        assert "undeclared" in report.failed

    def test_unknown_declared_field(self):
        """Modules may only declare the shared fields."""
        module = WarmingModule()
        module.writes = ("enthalpy",)
        with pytest.raises(ValueError, match="unknown fields"):
            PhysicsPipeline([module])

    def test_build_pipeline_order(self):
        """Enabled modules run in their fixed order."""
        _, options, mesh = small_setup(
            enable_enhanced_hvac=True,
            enable_reactive_transport=True,
            enable_amr=True,
            enable_fractured_media=True,
            enable_multiphase=True,
        )
        names = [m.name for m in build_pipeline(options, mesh)]
        assert names == ["multiphase", "fractured_media", "amr", "reactive_transport", "hvac"]

    def test_state_is_read_only(self):
        """Snapshots handed to modules cannot be edited in place."""
        _, options, mesh = small_setup()
        state = initial_state(mesh, options)
        with pytest.raises(ValueError):
            state.temperature[0, 0, 0] = 0.0


class TestSeasonalLoads:
    """Test the time-varying BTES boundary condition."""

    def test_inlet_clamped(self):
        """Extreme daily energies clamp the inlet to [273.15, 373.15] K."""
        _, options, _ = small_setup()
        bc = TimeVaryingBC(options, curve=np.zeros(365))

        assert bc.inlet_temperature(1e6) == 373.15
        assert bc.inlet_temperature(-1e6) == 273.15

    def test_charging_and_discharging(self):
        _, options, _ = small_setup(fluid_mass_flow_rate=0.5)
        bc = TimeVaryingBC(options, curve=np.zeros(365))
        delta = 240.0 * 1000.0 / 24.0 / (0.5 * 4186.0)

        assert bc.inlet_temperature(240.0) == pytest.approx(options.btes_charging_temperature + delta)
        assert bc.inlet_temperature(-240.0) == pytest.approx(options.btes_discharging_temperature - delta)

    def test_idle_day_uses_midpoint(self):
        _, options, _ = small_setup()
        bc = TimeVaryingBC(options, curve=np.zeros(365))
        midpoint = 0.5 * (options.btes_charging_temperature + options.btes_discharging_temperature)

        assert bc.inlet_temperature(0.0) == pytest.approx(midpoint)

    def test_curve_lookup_by_day(self):
        """Day d of the curve applies during day d, with part load |E|/max|E|."""
        _, options, _ = small_setup()
        curve = np.zeros(365)
        curve[2] = -500.0
        curve[100] = 1000.0
        bc = TimeVaryingBC(options, curve=curve)

        values = bc.boundary_values(2.5 * 86400.0)
        assert values.part_load_ratio == pytest.approx(0.5)
        assert bc.mode == "discharging"
        assert bc.get_diagnostics()["daily_energy_kwh"] == -500.0

    def test_curve_length_checked(self):
        _, options, _ = small_setup()
        with pytest.raises(ValueError, match="365"):
            TimeVaryingBC(options, curve=np.zeros(10))

    def test_constant_provider(self):
        _, options, _ = small_setup(fluid_inlet_temperature=280.0, fluid_mass_flow_rate=0.0)
        values = ConstantBoundaryProvider(options).boundary_values(0.0)

        assert values.inlet_temperature == 280.0
        assert values.part_load_ratio == 0.0


class TestHeatPump:
    """Test COP bounds and the HVAC module."""

    def test_cop_bounds(self):
        """Heating and cooling COPs stay within [1, max_cop]."""
        hp = HeatPumpPerformance(HVACParams())
        for source in np.linspace(-5.0, 30.0, 8):
            for sink in np.linspace(31.0, 60.0, 6):
                for plr in (0.0, 0.3, 1.0):
                    cop = hp.heating_cop(source, sink, plr)
                    eer = hp.cooling_cop(source, sink, plr)
                    assert 1.0 <= cop <= 6.0, f"Heating COP {cop} out of bounds"
                    assert 1.0 <= eer <= 6.0, f"Cooling EER {eer} out of bounds"

    def test_invalid_lift_returns_one(self):
        """A sink not warmer than the source gives COP 1."""
        hp = HeatPumpPerformance(HVACParams())
        assert hp.heating_cop(40.0, 35.0, 1.0) == 1.0
        assert hp.cooling_cop(20.0, 20.0, 1.0) == 1.0

    def test_part_load_factor_floor(self):
        hp = HeatPumpPerformance(HVACParams(cycling_degradation=0.9))
        assert hp.part_load_factor(0.0) >= 0.5
        assert hp.part_load_factor(1.0) == 1.0

    def test_supply_temperature_curve(self):
        """Weather compensation is clamped; warm days run at the indoor temperature."""
        p = HVACParams()
        hp = HeatPumpPerformance(p)
        assert hp.supply_temperature(-30.0) == p.max_supply_temperature
        assert hp.supply_temperature(20.0) == p.design_indoor_temperature
        assert p.min_supply_temperature <= hp.supply_temperature(10.0) <= p.max_supply_temperature

    def test_simple_cop(self):
        """Loop COP estimate: 4 for idle loads, never above 10."""
        assert simple_cop(50.0, 280.0, 282.0) == 4.0
        assert simple_cop(5000.0, 280.0, 282.0) == pytest.approx(308.15 / (308.15 - 281.0) * 0.6)
        assert simple_cop(5000.0, 307.0, 308.0) == 10.0

    def run_hvac(self, fluid, outdoor=273.15, steps=1):
        geometry, options, mesh = small_setup(enable_enhanced_hvac=True)
        hvac = EnhancedHVAC(options.hvac)
        pipeline = PhysicsPipeline([hvac])
        state = initial_state(mesh, options)
        boundary = BoundaryValues(
            inlet_temperature=fluid.inlet_temperature,
            mass_flow=fluid.mass_flow,
            outdoor_temperature=outdoor,
            part_load_ratio=1.0,
        )
        for step in range(steps):
            pipeline.run(state, 3600.0, make_context(geometry, options, mesh, step, boundary, fluid))
        return hvac

    def test_heating_mode(self):
        """Extraction drives heating; delivered heat exceeds the ground heat."""
        hvac = self.run_hvac(fluid_state(278.0, 281.0, 5000.0), steps=2)
        diag = hvac.get_diagnostics()

        assert hvac.last_mode == "heating"
        assert 1.0 < hvac.last_cop <= 6.0
        assert hvac.last_load > 5000.0
        assert diag["heating_hours"] == pytest.approx(2.0)
        assert diag["spf"] > 1.0
        assert diag["seer"] == 0.0

    def test_cooling_mode(self):
        hvac = self.run_hvac(fluid_state(303.15, 300.15, -5000.0), outdoor=303.15)
        diag = hvac.get_diagnostics()

        assert hvac.last_mode == "cooling"
        assert diag["cooling_mode"] == 1.0
        assert 0.0 < hvac.last_load < 5000.0
        assert diag["cooling_hours"] == pytest.approx(1.0)

    def test_idle_loop(self):
        hvac = self.run_hvac(fluid_state(283.0, 283.0, 0.0, active=False))

        assert hvac.last_mode == "idle"
        assert hvac.last_cop == 4.0
        assert hvac.get_diagnostics()["heating_hours"] == 0.0


class TestAMR:
    """Test refinement flagging and 2:1 smoothing."""

    def test_smoothing_extends_refinement(self):
        """Refining a level-1 node next to level-0 neighbours refines them too."""
        levels = np.zeros((5, 4, 5), dtype=np.int64)
        levels[2, 1, 2] = 1
        refine = np.zeros(levels.shape, dtype=bool)
        refine[2, 1, 2] = True

        result = smooth_refinement(levels, refine, max_level=3)

        for node in [(1, 1, 2), (3, 1, 2), (2, 1, 1), (2, 1, 3), (2, 0, 2), (2, 2, 2)]:
            assert result[node], f"Neighbour {node} should be refined"
        assert not result[2, 3, 2]
        assert result.sum() == 7

    def test_no_smoothing_needed(self):
        levels = np.zeros((5, 4, 5), dtype=np.int64)
        refine = np.zeros(levels.shape, dtype=bool)
        refine[2, 1, 2] = True

        assert np.array_equal(smooth_refinement(levels, refine, max_level=3), refine)

    def test_runs_on_interval(self):
        """The indicator runs every refinement_interval steps and writes no fields."""
        geometry, options, mesh = small_setup(enable_amr=True, amr=AMRParams(refinement_interval=2))
        amr = AdaptiveMeshRefinement(options.amr, mesh, options)
        pipeline = PhysicsPipeline([amr])
        state = initial_state(mesh, options)
        boundary = ConstantBoundaryProvider(options).boundary_values(0.0)

        _, report0 = pipeline.run(state, 3600.0, make_context(geometry, options, mesh, 0, boundary))
        new_state, report1 = pipeline.run(state, 3600.0, make_context(geometry, options, mesh, 1, boundary))

        assert report0.skipped == ["amr"]
        assert report1.ran == ["amr"]
        assert new_state is state
        # Near-borehole nodes are always critical
        assert amr.levels[1, 0, 1] == 1
        assert amr.levels.max() <= options.amr.max_refinement_level
        assert np.all(amr.levels[0] == 0) and np.all(amr.levels[:, :, -1] == 0)

    def test_effective_spacing_halves_per_level(self):
        geometry, options, mesh = small_setup()
        amr = AdaptiveMeshRefinement(AMRParams(), mesh, options)
        amr.levels[2, 0, 3] = 2

        dr, dth, dz = amr.effective_spacing()
        assert dr[2, 0, 3] == pytest.approx((mesh.r[3] - mesh.r[2]) / 4.0)
        assert dth[2, 1, 3] == pytest.approx(mesh.dtheta)


class TestReactiveTransport:
    """Test mineral precipitation and porosity feedback."""

    def test_empty_composition_is_noop(self):
        """Without dissolved species nothing is written."""
        geometry, options, mesh = small_setup()
        state = initial_state(mesh, options)
        module = ReactiveTransportModule([])

        assert module.update_state(state, 3600.0, make_context(geometry, options, mesh)) == {}
        new_state, report = PhysicsPipeline([module]).run(state, 3600.0, make_context(geometry, options, mesh))
        assert np.all(new_state.mineral_volume_fraction == 0.0)
        assert np.array_equal(new_state.permeability, state.permeability)

    def test_supersaturation_precipitates(self):
        """Supersaturated water precipitates, reducing porosity and permeability."""
        geometry, options, mesh = small_setup()
        state = initial_state(mesh, options)
        entry = FluidCompositionEntry(species="calcite", concentration=5.0, reference_solubility=1.0)
        module = ReactiveTransportModule([entry])

        new_state, report = PhysicsPipeline([module]).run(state, 3600.0, make_context(geometry, options, mesh))

        assert report.ran == ["reactive_transport"]
        assert np.all(new_state.mineral_volume_fraction > 0.0)
        assert np.all(new_state.porosity < state.porosity)
        assert np.all(new_state.permeability < state.permeability)
        assert module.get_diagnostics()["calcite_mean_concentration"] < 5.0

    def test_invalid_composition(self):
        with pytest.raises(ValueError, match="non-negative"):
            FluidCompositionEntry(species="silica", concentration=-1.0, reference_solubility=1.0)


class TestFlowModules:
    """Test groundwater, multiphase and fractured media modules."""

    def test_no_flow_field(self):
        """Equal heads and no regional flux give zero velocity and Péclet 0."""
        _, options, mesh = small_setup(hydraulic_head_top=0.0, hydraulic_head_bottom=0.0)
        field = compute_groundwater_field(mesh, options, mesh.permeability)

        assert np.all(field.velocity == 0.0)
        assert field.average_peclet == 0.0

    def test_regional_flux_projection(self):
        """Flux along x is radial at θ = 0 and angular at θ = π/2."""
        _, options, mesh = small_setup(
            groundwater_velocity=(1e-6, 0.0, 0.0), hydraulic_head_bottom=0.0,
        )
        field = compute_groundwater_field(mesh, options, mesh.permeability)

        assert field.darcy_flux[0, 2, 0, 3] == pytest.approx(1e-6)
        assert field.darcy_flux[1, 2, 1, 3] == pytest.approx(-1e-6)
        assert field.average_peclet > 0.0
        assert np.all(field.dispersion >= 0.0)

    def test_stale_on_permeability_change(self):
        _, options, mesh = small_setup()
        field = compute_groundwater_field(mesh, options, mesh.permeability)

        assert not field.is_stale(mesh.permeability)
        assert field.is_stale(mesh.permeability * 0.5)

    def test_multiphase_pressure_column(self):
        """Brine pressure increases with depth from atmospheric."""
        geometry, options, mesh = small_setup(enable_multiphase=True)
        state = initial_state(mesh, options)
        module = MultiphaseModule(MultiphaseParams())

        new_state, report = PhysicsPipeline([module]).run(state, 3600.0, make_context(geometry, options, mesh))

        assert report.ran == ["multiphase"]
        P = new_state.pressure[2, 0]
        assert P[0] == pytest.approx(101325.0)
        assert np.all(np.diff(P) > 0)
        assert np.all((new_state.saturation >= 0.0) & (new_state.saturation <= 1.0))

    def test_fractured_equilibrium(self):
        """Matrix and fractures at the same temperature exchange no heat."""
        geometry, options, mesh = small_setup(enable_fractured_media=True)
        state = initial_state(mesh, options)
        module = FracturedMediaModule(FractureParams(), options)

        new_state, _ = PhysicsPipeline([module]).run(state, 3600.0, make_context(geometry, options, mesh))

        assert np.allclose(new_state.temperature, state.temperature, atol=1e-9)
        assert np.all(new_state.permeability == module.effective_permeability)
        assert module.get_diagnostics()["matrix_fracture_energy_j"] == pytest.approx(0.0, abs=1.0)

    def test_shape_factor(self):
        assert shape_factor(1.0, 3) == pytest.approx(60.0)
