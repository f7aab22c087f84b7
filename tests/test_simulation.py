"""
Integration tests for the time-stepping orchestrator and the results.

Runs small CPU simulations: an idle borehole, basic heat extraction,
cancellation, a non-finite field, the module stack and the presets.
"""

import pytest
import numpy as np
import sys
import os
import threading

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from boreholesim import (
    Backend,
    BoreholeGeometry,
    BoundaryCondition,
    FluidCompositionEntry,
    FluidProperties,
    HeatExchangerType,
    Preset,
    RunState,
    Simulation,
    SimulationOptions,
    apply_preset,
    run_simulation,
)
from boreholesim.presets import PRESET_DESCRIPTIONS, preset_description
from boreholesim.transport import CUPY_AVAILABLE, discover_device


def small_options(**overrides):
    settings = dict(
        radial_points=8,
        angular_points=4,
        vertical_points=10,
        domain_radius=5.0,
        domain_extension=10.0,
        time_step=3600.0,
        simulation_time=5 * 3600.0,
        save_interval=2,
        surface_temperature=288.0,
        geothermal_gradient=0.0,
        bottom_boundary=BoundaryCondition.ADIABATIC,
        fluid_inlet_temperature=278.0,
        fluid_mass_flow_rate=0.5,
    )
    settings.update(overrides)
    return SimulationOptions(**settings)


def make_simulation(geometry=None, **overrides):
    return Simulation(
        geometry or BoreholeGeometry(depth=30.0),
        small_options(**overrides),
        backend=Backend.CPU,
        fluid_properties=FluidProperties(use_coolprop=False),
    )


class StopAfter:
    """Cancellation flag that trips after a number of checks."""

    def __init__(self, checks):
        self.remaining = checks

    def is_set(self):
        self.remaining -= 1
        return self.remaining < 0


class TestScenarios:
    """Test reference scenarios end to end."""

    def test_do_nothing(self):
        """Uniform ground, Dirichlet outer edge and no circulation: nothing changes."""
        sim = make_simulation(
            surface_temperature=283.15,
            fluid_inlet_temperature=283.15,
            fluid_mass_flow_rate=0.0,
            simulation_time=3 * 3600.0,
        )
        results = sim.run()

        assert results.status == RunState.COMPLETED
        assert results.n_steps == 3
        assert np.allclose(results.final_state.temperature, 283.15, atol=1e-9)
        assert np.all(results.series("heat_rate") == 0.0)
        assert np.all(results.series("converged"))
        assert results.borehole_thermal_resistance == 0.1

    def test_basic_extraction(self):
        """Cold inlet in warm ground: Q > 0 and non-increasing over time."""
        results = make_simulation(simulation_time=10 * 3600.0).run()
        Q = results.series("heat_rate")

        assert results.status == RunState.COMPLETED
        assert len(Q) == 10
        assert np.all(Q > 0), f"Heat rate should be positive, got {Q}"
        assert np.all(np.diff(Q) <= 1e-9 * Q[0]), f"Heat rate should not increase, got {Q}"
        assert np.all(results.series("outlet_temperature") > 278.0)
        assert results.total_energy > 0
        assert 0.01 <= results.borehole_thermal_resistance <= 1.0

    def test_ground_cools_near_wall(self):
        """Extraction cools the first shell and leaves the outer edge at its Dirichlet value."""
        results = make_simulation().run()
        T = results.final_state.temperature

        assert np.all(T[1, :, 1:4] < 288.0)
        assert np.all(T[-1] == 288.0)
        assert T.min() >= 273.0

    def test_utube_extraction(self):
        geometry = BoreholeGeometry(
            depth=30.0,
            heat_exchanger_type=HeatExchangerType.UTUBE,
            pipe_inner_diameter=0.026,
            pipe_outer_diameter=0.032,
            pipe_spacing=0.070,
        )
        results = make_simulation(geometry).run()

        assert np.all(results.series("heat_rate") > 0)

    def test_result_independent_of_tolerance(self):
        """Every macro step integrates its full interval whatever the tolerance."""
        runs = {
            tol: make_simulation(
                angular_points=24, simulation_time=8 * 3600.0, convergence_tolerance=tol,
            ).run()
            for tol in (1e-3, 1e-12)
        }
        loose, tight = runs[1e-3], runs[1e-12]
        iterations = loose.series("iterations")

        assert np.all(iterations > 1), f"Inner step should be well below the macro step, got {iterations}"
        assert np.array_equal(iterations, tight.series("iterations"))
        assert np.all(loose.series("converged"))
        assert np.allclose(loose.final_state.temperature, tight.final_state.temperature, rtol=0.0, atol=1e-9)
        assert np.allclose(loose.series("heat_rate"), tight.series("heat_rate"), rtol=1e-12)

    def test_reactive_without_species(self):
        """Reactive transport with an empty composition leaves the minerals at zero."""
        results = make_simulation(enable_reactive_transport=True).run()

        assert np.all(results.final_state.mineral_volume_fraction == 0.0)
        assert results.status == RunState.COMPLETED


class TestLifecycle:
    """Test cancellation, failure and the backend lifetime."""

    def test_cancel_before_start(self):
        """A pre-set event stops the run before the first step."""
        cancel = threading.Event()
        cancel.set()
        sim = make_simulation()

        results = sim.run(cancel=cancel)

        assert results.cancelled
        assert results.status == RunState.COMPLETED
        assert results.n_steps == 0
        assert sim.backend is None

    def test_cancel_mid_run(self):
        """Cancellation keeps the partial series and ends with a snapshot of the last step."""
        sim = make_simulation()
        results = sim.run(cancel=StopAfter(2))

        assert results.cancelled
        assert results.n_steps == 2
        assert results.snapshots[-1].step == 2
        assert sim.run_state == RunState.COMPLETED

    def test_non_finite_field_fails(self):
        """A NaN in the ground field stops the run as FAILED."""
        sim = make_simulation()
        T = np.array(sim.state.temperature)
        T[3, 1, 4] = np.nan
        sim.state = sim.state.replace(temperature=T)

        results = sim.run()

        assert results.status == RunState.FAILED
        assert sim.run_state == RunState.FAILED
        assert "Non-finite" in results.failure_message
        assert results.n_steps == 0
        assert sim.backend is None

    def test_finished_simulation_cannot_rerun(self):
        sim = make_simulation(simulation_time=3600.0)
        sim.run()
        with pytest.raises(RuntimeError, match="already finished"):
            sim.run()
        with pytest.raises(RuntimeError, match="already finished"):
            sim.step()

    def test_single_steps(self):
        """step() advances one macro step; the context manager releases the backend."""
        with make_simulation(simulation_time=2 * 3600.0) as sim:
            first = sim.step()
            assert first in (RunState.CONVERGED, RunState.DIVERGED)
            assert sim.state.step == 1
            assert sim.backend is not None
            final = sim.step()
        assert final == RunState.COMPLETED
        assert sim.finished
        assert sim.backend is None

    def test_iteration_cap_accepts_step(self):
        """Hitting the iteration cap keeps the step, flagged unconverged."""
        results = make_simulation(
            max_iterations_per_step=1, time_step=6 * 3600.0, simulation_time=12 * 3600.0,
            convergence_tolerance=1e-12,
        ).run()
        converged = results.series("converged")

        assert results.status == RunState.COMPLETED
        assert results.n_steps == 2
        assert not converged[0]
        assert np.all(results.series("iterations") == 1)


    @pytest.mark.skipif(
        CUPY_AVAILABLE and discover_device() is not None,
        reason="CUDA device present",
    )
    def test_forced_gpu_falls_back_to_cpu(self):
        """Requesting the GPU without CuPy or a device still completes on the CPU kernel."""
        sim = Simulation(
            BoreholeGeometry(depth=30.0),
            small_options(backend=Backend.GPU),
            fluid_properties=FluidProperties(use_coolprop=False),
        )
        with pytest.warns(RuntimeWarning, match="Falling back to the CPU kernel"):
            results = sim.run()

        assert results.status == RunState.COMPLETED
        assert results.n_steps == 5
        assert np.all(results.series("heat_rate") > 0)


class TestModuleStack:
    """Test a run with every optional module enabled."""

    def test_all_modules(self):
        options = dict(
            simulate_groundwater_flow=True,
            groundwater_velocity=(1e-7, 0.0, 0.0),
            enable_multiphase=True,
            enable_fractured_media=True,
            enable_amr=True,
            enable_reactive_transport=True,
            enable_enhanced_hvac=True,
            fluid_composition=[
                FluidCompositionEntry(species="calcite", concentration=3.0, reference_solubility=1.0),
            ],
            simulation_time=12 * 3600.0,
        )
        sim = make_simulation(**options)
        results = sim.run()

        assert results.status == RunState.COMPLETED
        assert results.final_state.is_finite()
        assert results.average_peclet > 0.0
        assert np.all(results.final_state.mineral_volume_fraction > 0.0)

        diagnostics = results.module_diagnostics_dataframe()
        modules = set(diagnostics["module"])
        assert {"multiphase", "fractured_media", "amr", "reactive_transport", "hvac"} <= modules
        assert all(module.failures == 0 for module in sim.pipeline), [m.last_error for m in sim.pipeline]
        assert results.final_diagnostics["amr"]["refined_nodes"] > 0

    def test_seasonal_btes(self):
        """Seasonal loads drive the inlet and the heat pump reports seasonal factors."""
        geometry = BoreholeGeometry(
            depth=30.0,
            heat_exchanger_type=HeatExchangerType.UTUBE,
            pipe_inner_diameter=0.026,
            pipe_outer_diameter=0.032,
            pipe_spacing=0.070,
        )
        sim = make_simulation(
            geometry,
            enable_time_varying_bc=True,
            enable_enhanced_hvac=True,
            time_step=6 * 3600.0,
            simulation_time=2 * 86400.0,
        )
        results = sim.run()

        inlet = results.series("inlet_temperature")
        assert np.all((inlet >= 273.15) & (inlet <= 373.15))
        assert "time_varying_bc" in results.final_diagnostics
        assert results.final_diagnostics["hvac"]["heating_hours"] > 0
        assert "SPF / SCOP / SEER" in results.summary_text()


class TestResults:
    """Test the results accumulator and its exports."""

    def test_frozen_after_finalize(self):
        """Finalised results reject further recording."""
        sim = make_simulation()
        results = sim.run()

        with pytest.raises(RuntimeError, match="finalised"):
            results.add_snapshot(results.final_state)
        with pytest.raises(RuntimeError, match="finalised"):
            results.record_diagnostics(99, 0.0, {})
        with pytest.raises(RuntimeError, match="finalised"):
            results.finalize(results.final_state)

    def test_snapshots_read_only(self):
        """Snapshots are saved every save_interval steps and at the end."""
        results = make_simulation().run()
        snapshots = results.snapshots

        assert [s.step for s in snapshots] == [2, 4, 5]
        with pytest.raises(ValueError):
            snapshots[0].temperature[0, 0, 0] = 0.0
        # Cooling ground contracts: tensile (positive) thermal stress
        assert snapshots[-1].thermal_stress.max() > 0.0

    def test_series_are_copies(self):
        results = make_simulation().run()
        Q = results.series("heat_rate")
        Q[:] = 0.0

        assert np.all(results.series("heat_rate") > 0)
        with pytest.raises(KeyError, match="Unknown series"):
            results.series("pressure")

    def test_dataframes(self):
        results = make_simulation().run()
        df = results.to_dataframe()
        profile = results.fluid_profile_dataframe()

        assert len(df) == results.n_steps
        assert "time_days" in df.columns
        assert df["time_days"].iloc[-1] == pytest.approx(5 / 24.0)
        assert list(profile.columns) == ["depth", "down_temperature", "up_temperature"]
        assert profile["depth"].iloc[0] == 0.0

    def test_metrics(self):
        results = make_simulation().run()
        mesh_r = results.mesh.r

        assert results.effective_conductivity == pytest.approx(2.5)
        assert 0.0 < results.thermal_influence_radius <= 0.8 * mesh_r[-1]
        assert results.average_heat_rate == pytest.approx(np.mean(results.series("heat_rate")))

    def test_summary_text(self):
        text = run_simulation(
            BoreholeGeometry(depth=30.0),
            small_options(),
            backend=Backend.CPU,
            fluid_properties=FluidProperties(use_coolprop=False),
        ).summary_text()

        assert "Status:" in text and "completed" in text
        assert "Average heat extraction" in text


class TestPresets:
    """Test the ready-made setups."""

    @pytest.mark.parametrize("preset", list(Preset))
    def test_preset_builds(self, preset):
        """Every preset yields a valid geometry/options pair with a description."""
        geometry, options = apply_preset(preset)

        assert geometry.depth > 0
        assert options.n_steps > 0
        assert preset_description(preset) == PRESET_DESCRIPTIONS[preset]

    def test_presets_are_fresh(self):
        geometry, options = apply_preset(Preset.SHALLOW_GSHP)
        options.simulation_time = 1.0
        _, again = apply_preset(Preset.SHALLOW_GSHP)

        assert again.simulation_time == 30 * 86400.0

    def test_btes_enables_seasonal_loads(self):
        _, options = apply_preset(Preset.BTES_SEASONAL)
        assert options.enable_time_varying_bc
        assert options.enable_enhanced_hvac
