"""
Results aggregator for a borehole simulation run.

Collects the per-step scalar series, periodic field snapshots and module
diagnostics, and computes the run's performance metrics on
:meth:`ResultsAccumulator.finalize`. A finalised accumulator is frozen: every
mutator raises ``RuntimeError`` afterwards.

Performance metrics
-------------------
- Average heat extraction rate and trapezoidal total energy
- Borehole thermal resistance per metre of exchanger,

      R_b = |T_ground - T_fluid| / (|Q_avg| / L)

  clamped to [0.01, 1] m·K/W (0.1 when |Q_avg| ≤ 100 W)
- Volume-weighted effective ground conductivity and diffusivity
- Thermal influence radius: largest radius whose θ-averaged temperature
  changed by 0.5 K, or 2·sqrt(α·t/π) when larger
- Average positive grid Péclet number of the groundwater field

Thermal stress in the snapshots is the constrained thermoelastic estimate
σ = -E·β·(T - T0)/(1 - ν).
"""

import logging
from dataclasses import dataclass
from typing import Dict, List, Optional

import numpy as np
import pandas as pd
from scipy.integrate import trapezoid

from .borehole.circulation import FluidCirculationState
from .config import BoreholeGeometry, SimulationOptions
from .mesh import CylindricalMesh
from .state import RunState, SimulationState

logger = logging.getLogger(__name__)

SERIES_FIELDS = (
    "time",
    "heat_rate",
    "inlet_temperature",
    "outlet_temperature",
    "cop",
    "part_load_ratio",
    "max_change",
    "iterations",
    "converged",
    "inner_dt",
)

MIN_HEAT_RATE = 100.0  # W
DEFAULT_RESISTANCE = 0.1  # m·K/W
RESISTANCE_RANGE = (0.01, 1.0)  # m·K/W
GROUND_SAMPLES = 20
INFLUENCE_THRESHOLD = 0.5  # K


def _read_only(array) -> np.ndarray:
    out = np.array(array, dtype=np.float64, copy=True)
    out.flags.writeable = False
    return out


def thermal_stress(temperature, initial_temperature, youngs_modulus, thermal_expansion, poissons_ratio):
    """Constrained thermal stress [Pa], compressive for heating."""
    return -youngs_modulus * thermal_expansion * (temperature - initial_temperature) / (1.0 - poissons_ratio)


@dataclass(frozen=True, eq=False)
class FieldSnapshot:
    """Read-only copy of the fields at one saved step."""
    time: float
    step: int
    temperature: np.ndarray
    pressure: np.ndarray
    saturation: np.ndarray
    thermal_stress: np.ndarray


class ResultsAccumulator:
    """
    Append-only results of one run.

    Parameters
    ----------
    mesh : CylindricalMesh
        Mesh of the run (cell volumes, materials)
    geometry : BoreholeGeometry
        Exchanger length for the thermal resistance
    options : SimulationOptions
        Geomechanics constants and the run duration
    initial_state : SimulationState
        Reference for temperature changes and thermal stress
    """

    def __init__(
        self,
        mesh: CylindricalMesh,
        geometry: BoreholeGeometry,
        options: SimulationOptions,
        initial_state: SimulationState,
    ):
        self.mesh = mesh
        self.geometry = geometry
        self.options = options
        self.initial_temperature = _read_only(initial_state.temperature)

        self._series: Dict[str, list] = {name: [] for name in SERIES_FIELDS}
        self._snapshots: List[FieldSnapshot] = []
        self._diagnostics: List[Dict] = []

        self.finalized = False
        self.status = RunState.IDLE
        self.cancelled = False
        self.failure_message: Optional[str] = None
        self.final_state: Optional[SimulationState] = None
        self.fluid_profile: Optional[FluidCirculationState] = None

        self.average_heat_rate = 0.0
        self.total_energy = 0.0
        self.borehole_thermal_resistance = DEFAULT_RESISTANCE
        self.effective_conductivity = 0.0
        self.effective_diffusivity = 0.0
        self.thermal_influence_radius = 0.0
        self.average_peclet = 0.0
        self.final_diagnostics: Dict[str, Dict[str, float]] = {}

    def _require_open(self):
        if self.finalized:
            raise RuntimeError("Results are finalised and can no longer be modified")

    # -------------------------------------------------------------------------
    # Recording
    # -------------------------------------------------------------------------
    def record_step(
        self,
        time: float,
        fluid: FluidCirculationState,
        cop: float,
        part_load_ratio: float,
        max_change: float,
        iterations: int,
        converged: bool,
        inner_dt: float,
    ) -> None:
        """Append one macro step to the scalar series."""
        self._require_open()
        s = self._series
        s["time"].append(float(time))
        s["heat_rate"].append(fluid.heat_rate)
        s["inlet_temperature"].append(fluid.inlet_temperature)
        s["outlet_temperature"].append(fluid.outlet_temperature)
        s["cop"].append(float(cop))
        s["part_load_ratio"].append(float(part_load_ratio))
        s["max_change"].append(float(max_change))
        s["iterations"].append(int(iterations))
        s["converged"].append(bool(converged))
        s["inner_dt"].append(float(inner_dt))

    def add_snapshot(self, state: SimulationState) -> FieldSnapshot:
        """Store a read-only copy of the state's fields with the thermal stress."""
        self._require_open()
        g = self.options.geomechanics
        snapshot = FieldSnapshot(
            time=state.time,
            step=state.step,
            temperature=_read_only(state.temperature),
            pressure=_read_only(state.pressure),
            saturation=_read_only(state.saturation),
            thermal_stress=_read_only(thermal_stress(
                state.temperature, self.initial_temperature,
                g.youngs_modulus, g.thermal_expansion, g.poissons_ratio,
            )),
        )
        self._snapshots.append(snapshot)
        return snapshot

    def record_diagnostics(self, step: int, time: float, diagnostics: Dict[str, Dict[str, float]]) -> None:
        """Append one row per module diagnostic value."""
        self._require_open()
        for module, values in diagnostics.items():
            for key, value in values.items():
                self._diagnostics.append(
                    {"step": step, "time": time, "module": module, "diagnostic": key, "value": float(value)}
                )
        self.final_diagnostics = {m: dict(v) for m, v in diagnostics.items()}

    # -------------------------------------------------------------------------
    # Access
    # -------------------------------------------------------------------------
    def series(self, name: str) -> np.ndarray:
        """Copy of one scalar series."""
        if name not in self._series:
            raise KeyError(f"Unknown series '{name}'")
        return np.array(self._series[name])

    @property
    def n_steps(self) -> int:
        return len(self._series["time"])

    @property
    def snapshots(self) -> List[FieldSnapshot]:
        return list(self._snapshots)

    # -------------------------------------------------------------------------
    # Finalisation
    # -------------------------------------------------------------------------
    def finalize(
        self,
        final_state: SimulationState,
        fluid: Optional[FluidCirculationState] = None,
        groundwater=None,
        status: RunState = RunState.COMPLETED,
        cancelled: bool = False,
        failure_message: Optional[str] = None,
    ) -> "ResultsAccumulator":
        """
        Compute the performance metrics and freeze the accumulator.

        Parameters
        ----------
        final_state : SimulationState
            Last good state of the run
        fluid : FluidCirculationState, optional
            Last solved fluid legs
        groundwater : GroundwaterField, optional
            Flow field for the average Péclet number
        status : RunState
            COMPLETED or FAILED
        cancelled : bool
            True when the run stopped on a cancellation request
        failure_message : str, optional
        """
        self._require_open()
        self.final_state = final_state
        self.fluid_profile = fluid
        self.status = status
        self.cancelled = cancelled
        self.failure_message = failure_message

        t = self.series("time")
        Q = self.series("heat_rate")
        if len(Q):
            self.average_heat_rate = float(np.mean(Q))
            self.total_energy = float(trapezoid(Q, t)) if len(Q) > 1 else 0.0

        self.borehole_thermal_resistance = self._thermal_resistance(final_state, fluid)
        self._effective_ground_properties()
        self.thermal_influence_radius = self._influence_radius(final_state)
        if groundwater is not None:
            self.average_peclet = groundwater.average_peclet

        self.finalized = True
        logger.info(
            "Results finalised (%s%s): %d steps, Q_avg=%.1f W, E=%.3g J",
            status.value, ", cancelled" if cancelled else "", self.n_steps,
            self.average_heat_rate, self.total_energy,
        )
        return self

    def _thermal_resistance(self, state: SimulationState, fluid: Optional[FluidCirculationState]) -> float:
        if fluid is None or abs(self.average_heat_rate) <= MIN_HEAT_RATE:
            return DEFAULT_RESISTANCE
        length = self.geometry.active_depth
        depths = (np.arange(GROUND_SAMPLES) + 0.5) * length / GROUND_SAMPLES
        column = np.asarray(state.temperature)[1].mean(axis=0)
        T_ground = float(np.mean(np.interp(depths, self.mesh.z, column)))
        T_fluid = 0.5 * (fluid.inlet_temperature + fluid.outlet_temperature)
        R = abs(T_ground - T_fluid) / (abs(self.average_heat_rate) / length)
        return float(np.clip(R, *RESISTANCE_RANGE))

    def _effective_ground_properties(self) -> None:
        volume = self.mesh.cell_volumes()
        total = volume.sum()
        self.effective_conductivity = float(np.sum(self.mesh.conductivity * volume) / total)
        self.effective_diffusivity = float(np.sum(self.mesh.diffusivity() * volume) / total)

    def _influence_radius(self, state: SimulationState) -> float:
        mesh = self.mesh
        change = np.abs(np.asarray(state.temperature) - self.initial_temperature).mean(axis=1)
        depths = [mesh.nz // 4, mesh.nz // 2, 3 * mesh.nz // 4]
        affected = np.any(change[1:, depths] >= INFLUENCE_THRESHOLD, axis=1)
        observed = float(mesh.r[1:][affected].max()) if affected.any() else 0.0
        theoretical = 2.0 * np.sqrt(self.effective_diffusivity * max(state.time, 0.0) / np.pi)
        radius = max(observed, theoretical)
        return float(min(radius, 0.8 * mesh.r[-1]))

    # -------------------------------------------------------------------------
    # Export
    # -------------------------------------------------------------------------
    def to_dataframe(self) -> pd.DataFrame:
        """Scalar time series, one row per macro step."""
        df = pd.DataFrame({name: self._series[name] for name in SERIES_FIELDS})
        df.insert(1, "time_days", df["time"] / 86400.0)
        return df

    def fluid_profile_dataframe(self) -> pd.DataFrame:
        """Down- and up-leg temperature per depth of the last solved step."""
        if self.fluid_profile is None:
            return pd.DataFrame(columns=["depth", "down_temperature", "up_temperature"])
        f = self.fluid_profile
        return pd.DataFrame({"depth": f.depths, "down_temperature": f.down, "up_temperature": f.up})

    def module_diagnostics_dataframe(self) -> pd.DataFrame:
        """Long table of module diagnostics: step, time, module, diagnostic, value."""
        return pd.DataFrame(self._diagnostics, columns=["step", "time", "module", "diagnostic", "value"])

    def summary_text(self) -> str:
        """Human-readable run summary."""
        lines = [
            "Borehole simulation results",
            "=" * 40,
            f"Status:                       {self.status.value}" + (" (cancelled)" if self.cancelled else ""),
            f"Steps completed:              {self.n_steps}",
        ]
        if self.failure_message:
            lines.append(f"Failure:                      {self.failure_message}")
        if self.n_steps:
            converged = self.series("converged")
            lines += [
                f"Simulated time:               {self.series('time')[-1] / 86400.0:.2f} days",
                f"Average heat extraction:      {self.average_heat_rate:.1f} W",
                f"Total extracted energy:       {self.total_energy / 3.6e9:.3f} MWh",
                f"Final outlet temperature:     {self.series('outlet_temperature')[-1] - 273.15:.2f} °C",
                f"Average COP:                  {np.mean(self.series('cop')):.2f}",
                f"Steps at iteration cap:       {int(np.count_nonzero(~converged))}",
            ]
        lines += [
            f"Borehole thermal resistance:  {self.borehole_thermal_resistance:.3f} m·K/W",
            f"Effective conductivity:       {self.effective_conductivity:.2f} W/(m·K)",
            f"Effective diffusivity:        {self.effective_diffusivity:.3e} m²/s",
            f"Thermal influence radius:     {self.thermal_influence_radius:.2f} m",
        ]
        if self.average_peclet > 0:
            lines.append(f"Average Péclet number:        {self.average_peclet:.3g}")
        hvac = self.final_diagnostics.get("hvac")
        if hvac:
            lines.append(f"SPF / SCOP / SEER:            {hvac['spf']:.2f} / {hvac['scop']:.2f} / {hvac['seer']:.2f}")
        return "\n".join(lines)
