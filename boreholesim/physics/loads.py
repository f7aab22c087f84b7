"""
Boundary-condition providers: fluid inlet temperature, mass flow, outdoor
temperature and part-load ratio for each macro step.

- ConstantBoundaryProvider: fixed inlet and flow from the options
- TimeVaryingBC: seasonal BTES charge/discharge from a daily energy curve
"""

import logging
from dataclasses import dataclass
from typing import Dict, Optional, Sequence

import numpy as np

from ..config import SimulationOptions
from .base import PhysicsModule

logger = logging.getLogger(__name__)

SECONDS_PER_DAY = 86400.0
DAYS_PER_YEAR = 365
INLET_RANGE = (273.15, 373.15)  # K

# Default seasonal curve: charging peaks mid-July, discharging mid-January
DEFAULT_SEASONAL_AMPLITUDE = 1000.0  # kWh/day
DEFAULT_PEAK_CHARGING_DAY = 196


@dataclass
class BoundaryValues:
    """Loads applied during one macro step."""
    inlet_temperature: float   # K
    mass_flow: float           # kg/s
    outdoor_temperature: float  # K
    part_load_ratio: float     # [-]


def day_of_year(time: float) -> int:
    """Day index 0-364 for a simulated time [s]."""
    return int((time / SECONDS_PER_DAY) % DAYS_PER_YEAR)


def outdoor_temperature(time: float, options: SimulationOptions) -> float:
    """
    Annual sinusoid of the outdoor air temperature.

        T(t) = T_mean - A·cos(2π (day - coldest_day) / 365)

    Parameters
    ----------
    time : float
        Simulated time [s]
    options : SimulationOptions
        Mean, amplitude and coldest day

    Returns
    -------
    float
        Outdoor temperature [K]
    """
    day = (time / SECONDS_PER_DAY) % DAYS_PER_YEAR
    phase = 2.0 * np.pi * (day - options.coldest_day) / DAYS_PER_YEAR
    return options.outdoor_mean_temperature - options.outdoor_amplitude * np.cos(phase)


def default_seasonal_curve(
    amplitude: float = DEFAULT_SEASONAL_AMPLITUDE,
    peak_day: int = DEFAULT_PEAK_CHARGING_DAY,
) -> np.ndarray:
    """Cosine BTES cycle [kWh/day], positive = charging."""
    days = np.arange(DAYS_PER_YEAR)
    return amplitude * np.cos(2.0 * np.pi * (days - peak_day) / DAYS_PER_YEAR)


class ConstantBoundaryProvider:
    """Fixed inlet temperature and mass flow from the options."""

    def __init__(self, options: SimulationOptions):
        self.options = options

    def boundary_values(self, time: float) -> BoundaryValues:
        o = self.options
        return BoundaryValues(
            inlet_temperature=o.fluid_inlet_temperature,
            mass_flow=o.fluid_mass_flow_rate,
            outdoor_temperature=outdoor_temperature(time, o),
            part_load_ratio=1.0 if o.fluid_mass_flow_rate > 0 else 0.0,
        )


class TimeVaryingBC(PhysicsModule):
    """
    Seasonal BTES load: the daily energy curve sets the inlet temperature.

        P  = E · 1000 / 24                     [W]
        ΔT = P / (ṁ · cp)
        charging:     T_in = T_charge + ΔT
        discharging:  T_in = T_discharge - |ΔT|
        idle:         T_in = (T_charge + T_discharge) / 2

    clamped to [273.15, 373.15] K. The part-load ratio is |E| / max|E|.

    Parameters
    ----------
    options : SimulationOptions
        Curve, BTES temperatures, mass flow and fluid specific heat
    curve : sequence of float, optional
        365 daily energies [kWh/day]; overrides the options
    """

    name = "time_varying_bc"

    def __init__(self, options: SimulationOptions, curve: Optional[Sequence[float]] = None):
        super().__init__()
        self.options = options
        if curve is None:
            curve = options.seasonal_energy_curve
        if curve is None:
            curve = default_seasonal_curve()
        self.curve = np.asarray(curve, dtype=np.float64)
        if self.curve.shape != (DAYS_PER_YEAR,):
            raise ValueError(f"Seasonal energy curve must hold {DAYS_PER_YEAR} daily values")
        peak = float(np.max(np.abs(self.curve)))
        self._peak = peak if peak > 0 else 1.0
        self.last_values: Optional[BoundaryValues] = None
        self.last_energy = 0.0
        self.mode = "idle"
        self._last_logged_day = -1

    def inlet_temperature(self, daily_energy: float) -> float:
        o = self.options
        power = daily_energy * 1000.0 / 24.0
        delta_t = power / (o.fluid_mass_flow_rate * o.fluid_specific_heat) if o.fluid_mass_flow_rate > 0 else 0.0
        if daily_energy > 0:
            T = o.btes_charging_temperature + delta_t
        elif daily_energy < 0:
            T = o.btes_discharging_temperature - abs(delta_t)
        else:
            T = 0.5 * (o.btes_charging_temperature + o.btes_discharging_temperature)
        return float(np.clip(T, *INLET_RANGE))

    def boundary_values(self, time: float) -> BoundaryValues:
        day = day_of_year(time)
        energy = float(self.curve[day])
        values = BoundaryValues(
            inlet_temperature=self.inlet_temperature(energy),
            mass_flow=self.options.fluid_mass_flow_rate,
            outdoor_temperature=outdoor_temperature(time, self.options),
            part_load_ratio=abs(energy) / self._peak,
        )
        self.mode = "charging" if energy > 0 else "discharging" if energy < 0 else "idle"
        if day % 30 == 0 and day != self._last_logged_day:
            self._last_logged_day = day
            logger.info(
                "BTES day %d: %.0f kWh/day (%s), T_in=%.1f °C",
                day, energy, self.mode, values.inlet_temperature - 273.15,
            )
        self.last_values = values
        self.last_energy = energy
        return values

    def update_state(self, state, dt, context):
        return {}

    def get_diagnostics(self) -> Dict[str, float]:
        diag = super().get_diagnostics()
        diag["daily_energy_kwh"] = self.last_energy
        if self.last_values is not None:
            diag["inlet_temperature"] = self.last_values.inlet_temperature
            diag["part_load_ratio"] = self.last_values.part_load_ratio
        return diag
