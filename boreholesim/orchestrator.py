"""
Time-stepping orchestrator for a single borehole simulation.

Each macro step:

1. check for cancellation
2. take the step's loads from the boundary-condition provider
3. refresh the groundwater field when the permeability changed
4. solve the fluid legs against the ground and set the wall values
5. iterate the transport kernel in stable sub-steps until the macro
   interval is covered; when the iteration cap cuts it short the step is
   accepted, flagged unconverged unless the max change is below the tolerance
6. stop as FAILED when the temperature field is no longer finite
7. run the enabled physics modules in their fixed order
8. record the step and, every ``save_interval`` steps, a snapshot

The transport backend is created on first use and released on every exit
path of :meth:`Simulation.run`.
"""

import logging
from typing import Optional

import numpy as np

from .borehole.circulation import BoreholeFluidModel, FluidCirculationState
from .borehole.properties import FluidProperties
from .config import Backend, BoreholeGeometry, SimulationOptions
from .mesh import CylindricalMesh, build_mesh
from .physics import (
    ConstantBoundaryProvider,
    StepContext,
    TimeVaryingBC,
    build_pipeline,
    compute_groundwater_field,
    simple_cop,
)
from .physics.multiphase import hydrostatic_pressure
from .results import ResultsAccumulator
from .state import RunState, SimulationState
from .transport import build_boundary_spec, create_backend

logger = logging.getLogger(__name__)

_QUIET_STATES = (RunState.STEPPING, RunState.ITERATING, RunState.CONVERGED)


def initial_state(mesh: CylindricalMesh, options: SimulationOptions) -> SimulationState:
    """
    Undisturbed starting state.

    Temperature follows the initial profile (or the geothermal gradient),
    pressure is hydrostatic with the fluid density, and porosity and
    permeability come from the mesh.
    """
    shape = mesh.shape
    profile = np.asarray(options.undisturbed_temperature(mesh.z), dtype=np.float64)
    temperature = np.broadcast_to(profile[None, None, :], shape)
    pressure = hydrostatic_pressure(np.full(shape, options.fluid_density), mesh.z)
    return SimulationState(
        temperature=temperature,
        pressure=pressure,
        saturation=np.full(shape, options.multiphase.initial_water_saturation),
        mineral_volume_fraction=np.zeros(shape),
        porosity=mesh.porosity,
        permeability=mesh.permeability,
    )


class Simulation:
    """
    Borehole heat exchanger simulation.

    Parameters
    ----------
    geometry : BoreholeGeometry
        Borehole and exchanger geometry
    options : SimulationOptions
        Grid, numerics, ground, loads and module toggles
    provider : object, optional
        Boundary-condition provider with ``boundary_values(time)``.
        Defaults to the seasonal BTES load when enabled, else constant loads.
    backend : Backend, optional
        Overrides ``options.backend``
    fluid_properties : FluidProperties, optional
        Water property provider for the fluid legs

    Examples
    --------
    >>> sim = Simulation(BoreholeGeometry(), SimulationOptions(simulation_time=86400))
    >>> results = sim.run()
    >>> print(results.summary_text())
    """

    def __init__(
        self,
        geometry: BoreholeGeometry,
        options: SimulationOptions,
        provider=None,
        backend: Optional[Backend] = None,
        fluid_properties: Optional[FluidProperties] = None,
    ):
        self.geometry = geometry
        self.options = options
        self.mesh = build_mesh(geometry, options)
        self.fluid_model = BoreholeFluidModel(geometry, self.mesh, options, properties=fluid_properties)
        self.boundary_spec = build_boundary_spec(self.mesh, options)

        self.seasonal_load = TimeVaryingBC(options) if options.enable_time_varying_bc else None
        if provider is None:
            provider = self.seasonal_load or ConstantBoundaryProvider(options)
        self.provider = provider
        self.pipeline = build_pipeline(options, self.mesh)

        self.state = initial_state(self.mesh, options)
        self.results = ResultsAccumulator(self.mesh, geometry, options, self.state)
        self.fluid_state: Optional[FluidCirculationState] = None
        self.groundwater = None
        self.run_state = RunState.IDLE

        self._backend_choice = backend if backend is not None else options.backend
        self.backend = None
        self._needs_upload = True

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------
    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()
        return False

    def close(self) -> None:
        """Release the transport backend."""
        if self.backend is not None:
            self.backend.close()
            self.backend = None
            self._needs_upload = True

    def _ensure_backend(self):
        if self.backend is None:
            self.backend = create_backend(self.mesh, self._backend_choice)
            self._needs_upload = True
            if self.groundwater is not None:
                self.backend.set_transport_fields(self.groundwater.velocity, self.groundwater.dispersion)
        return self.backend

    def _set_run_state(self, new_state: RunState) -> None:
        if new_state == self.run_state:
            return
        level = logging.DEBUG if new_state in _QUIET_STATES else logging.INFO
        logger.log(level, "Run state %s -> %s (step %d)", self.run_state.value, new_state.value, self.state.step)
        self.run_state = new_state

    @property
    def finished(self) -> bool:
        return self.results.finalized

    # -------------------------------------------------------------------------
    # Driving
    # -------------------------------------------------------------------------
    def run(self, cancel=None) -> ResultsAccumulator:
        """
        Run to the end of the simulated time.

        Parameters
        ----------
        cancel : threading.Event, optional
            Any object with ``is_set()``; checked once per macro step

        Returns
        -------
        ResultsAccumulator
            Finalised results; partial when cancelled or failed
        """
        if self.finished:
            raise RuntimeError("Simulation has already finished")
        logger.info(
            "Starting simulation: %d steps of %.0f s on a %dx%dx%d mesh",
            self.options.n_steps, self.options.time_step, *self.mesh.shape,
        )
        try:
            self._ensure_backend()
            while not self.finished:
                if cancel is not None and cancel.is_set():
                    logger.info("Simulation cancelled after %d steps", self.state.step)
                    self._finish(RunState.COMPLETED, cancelled=True)
                    break
                self._advance()
        except Exception:
            self._set_run_state(RunState.FAILED)
            raise
        finally:
            self.close()
        return self.results

    def step(self) -> RunState:
        """
        Advance one macro step and return the resulting run state.

        The backend stays open between calls; use the simulation as a
        context manager or call :meth:`close` when done.
        """
        if self.finished:
            raise RuntimeError("Simulation has already finished")
        self._ensure_backend()
        self._advance()
        return self.run_state

    def _refresh_groundwater(self, state: SimulationState) -> None:
        if not self.options.simulate_groundwater_flow:
            return
        if self.groundwater is None or self.groundwater.is_stale(state.permeability):
            self.groundwater = compute_groundwater_field(self.mesh, self.options, state.permeability)
            self.backend.set_transport_fields(self.groundwater.velocity, self.groundwater.dispersion)

    def _advance(self) -> None:
        options = self.options
        backend = self.backend
        state = self.state
        step_index = state.step
        dt = min(options.time_step, options.simulation_time - state.time)

        self._set_run_state(RunState.STEPPING)
        values = self.provider.boundary_values(state.time)
        self._refresh_groundwater(state)

        fluid = self.fluid_model.solve(state.temperature, values.inlet_temperature, values.mass_flow)
        mask, wall = self.fluid_model.wall_values(fluid)
        backend.set_boundaries(self.boundary_spec.with_wall(mask, wall))
        if self._needs_upload:
            backend.upload(state.temperature)
            self._needs_upload = False
        # New wall values act from the first iteration of the step
        backend.apply_boundaries()

        self._set_run_state(RunState.ITERATING)
        remaining = dt
        iterations = 0
        max_change = 0.0
        inner_dt = 0.0
        # The whole macro interval is integrated; the max change only flags
        # convergence when the iteration cap cuts the interval short
        while remaining > 1e-9 * dt and iterations < options.max_iterations_per_step:
            inner = min(remaining, backend.stable_time_step(options.stability_safety))
            max_change = backend.iterate(inner)
            backend.apply_boundaries()
            iterations += 1
            remaining -= inner
            inner_dt = max(inner_dt, inner)
        converged = remaining <= 1e-9 * dt or max_change < options.convergence_tolerance

        stepped = state.replace(
            temperature=backend.download(),
            time=state.time + dt,
            step=step_index + 1,
            iterations=state.iterations + iterations,
        )
        if not stepped.is_finite():
            message = f"Non-finite temperature on step {step_index}"
            logger.error("%s; stopping with the last good state", message)
            self._finish(RunState.FAILED, failure_message=message)
            return

        if converged:
            self._set_run_state(RunState.CONVERGED)
        else:
            self._set_run_state(RunState.DIVERGED)
            logger.warning(
                "Step %d hit the iteration cap (%d) with %.0f s of %.0f s uncovered "
                "and max change %.3e K; accepting it",
                step_index, iterations, remaining, dt, max_change,
            )
        context = StepContext(
            step=step_index,
            time=stepped.time,
            mesh=self.mesh,
            geometry=self.geometry,
            options=options,
            boundary=values,
            fluid=fluid,
            groundwater=self.groundwater,
        )
        new_state, report = self.pipeline.run(stepped, dt, context)
        if new_state.temperature is not stepped.temperature:
            self._needs_upload = True

        self.state = new_state
        self.fluid_state = fluid
        self._record(values, fluid, report, max_change, iterations, converged, inner_dt)
        logger.debug(
            "Step %d: %d iterations, max change %.3e K, Q=%.1f W",
            step_index, iterations, max_change, fluid.heat_rate,
        )

        if new_state.step >= options.n_steps:
            self._finish(RunState.COMPLETED)

    def _cop(self, fluid: FluidCirculationState, report) -> float:
        for module in self.pipeline:
            if module.name == "hvac" and module.name in report.ran:
                return module.last_cop
        return simple_cop(fluid.heat_rate, fluid.inlet_temperature, fluid.outlet_temperature)

    def _record(self, values, fluid, report, max_change, iterations, converged, inner_dt) -> None:
        state = self.state
        self.results.record_step(
            time=state.time,
            fluid=fluid,
            cop=self._cop(fluid, report),
            part_load_ratio=values.part_load_ratio,
            max_change=max_change,
            iterations=iterations,
            converged=converged,
            inner_dt=inner_dt,
        )
        diagnostics = {module.name: module.get_diagnostics() for module in self.pipeline}
        if isinstance(self.provider, TimeVaryingBC):
            diagnostics[self.provider.name] = self.provider.get_diagnostics()
        if diagnostics:
            self.results.record_diagnostics(state.step, state.time, diagnostics)

        interval = self.options.save_interval
        if (interval > 0 and state.step % interval == 0) or state.step >= self.options.n_steps:
            self.results.add_snapshot(state)

    def _finish(self, status: RunState, cancelled: bool = False, failure_message: Optional[str] = None) -> None:
        snapshots = self.results.snapshots
        if self.state.step > 0 and (not snapshots or snapshots[-1].step != self.state.step):
            self.results.add_snapshot(self.state)
        self.results.finalize(
            self.state,
            fluid=self.fluid_state,
            groundwater=self.groundwater,
            status=status,
            cancelled=cancelled,
            failure_message=failure_message,
        )
        self._set_run_state(status)


def run_simulation(geometry: BoreholeGeometry, options: SimulationOptions, **kwargs) -> ResultsAccumulator:
    """Build a :class:`Simulation` and run it to completion."""
    return Simulation(geometry, options, **kwargs).run()
