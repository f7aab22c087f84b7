"""
Heat pump performance on top of the borehole heat exchange.

The ground loop is the evaporator source in heating mode (heat extracted,
Q > 0) and the condenser sink in cooling mode (heat rejected, Q < 0):

    heating:  COP = η_C · T_sink / (T_sink - T_source) · PLF · f_T
    cooling:  EER = 0.9·η_C · T_source / (T_sink - T_source) · PLF · f_T

    PLF = max(0.5, 1 - Cd·(1 - max(PLR, PLR_min)))
    f_T = clip(1 - c·(ΔT/ΔT_ref - 1)², 0.7, 1.2)

Both are clamped to [1, COP_max]. The building side uses a weather
compensation curve for the heating supply temperature. Seasonal factors
(SPF, SCOP, SEER) are accumulated over the run.

References
----------
Self, S. J., Reddy, B. V., & Rosen, M. A. (2013): Geothermal heat pump
    systems: Status review and comparison with other heating options.
    Applied Energy, 101, 341-348
"""

import logging
from typing import Dict

import numpy as np

from ..config import HVACParams
from .base import PhysicsModule, StepContext

logger = logging.getLogger(__name__)

KELVIN = 273.15
HEATING_REFERENCE_LIFT = 30.0  # K
COOLING_REFERENCE_LIFT = 25.0  # K
COOLING_CARNOT_FACTOR = 0.9
MIN_LOAD = 100.0  # W, below this the heat pump is idle

# Loop-level estimate used when the detailed heat pump model is disabled
DEFAULT_SUPPLY_TEMPERATURE = 308.15  # K
DEFAULT_COMPRESSOR_EFFICIENCY = 0.6
DEFAULT_COP = 4.0
MAX_SIMPLE_COP = 10.0


def simple_cop(
    heat_rate: float,
    inlet_temperature: float,
    outlet_temperature: float,
    supply_temperature: float = DEFAULT_SUPPLY_TEMPERATURE,
    compressor_efficiency: float = DEFAULT_COMPRESSOR_EFFICIENCY,
) -> float:
    """
    Carnot-fraction COP from the mean loop temperature.

    Parameters
    ----------
    heat_rate : float
        Ground heat extraction [W], negative for rejection
    inlet_temperature, outlet_temperature : float
        Loop temperatures [K]
    supply_temperature : float
        Building supply temperature [K]
    compressor_efficiency : float
        Fraction of the Carnot COP

    Returns
    -------
    float
        COP, 4.0 when |Q| ≤ 100 W, at most 10
    """
    if abs(heat_rate) <= MIN_LOAD:
        return DEFAULT_COP
    mean_fluid = 0.5 * (inlet_temperature + outlet_temperature)
    if heat_rate > 0:
        lift = max(1.0, supply_temperature - mean_fluid)
    else:
        lift = max(1.0, mean_fluid - supply_temperature)
    return min(MAX_SIMPLE_COP, supply_temperature / lift * compressor_efficiency)


class HeatPumpPerformance:
    """
    Part-load and lift-corrected heat pump model with seasonal bookkeeping.

    Temperatures passed to the public methods are in °C.

    Parameters
    ----------
    params : HVACParams
        Heat pump and building parameters
    """

    def __init__(self, params: HVACParams):
        self.params = params
        self.reset()

    def reset(self):
        self.total_heat_delivered = 0.0  # J
        self.total_work_input = 0.0  # J
        self.heating_hours = 0.0
        self.cooling_hours = 0.0

    def part_load_factor(self, part_load_ratio: float) -> float:
        p = self.params
        plr = max(float(np.clip(part_load_ratio, 0.0, 1.0)), p.minimum_plr)
        return max(0.5, 1.0 - p.cycling_degradation * (1.0 - plr))

    def temperature_correction(self, source: float, sink: float, heating: bool) -> float:
        reference = HEATING_REFERENCE_LIFT if heating else COOLING_REFERENCE_LIFT
        ratio = abs(sink - source) / reference
        factor = 1.0 - self.params.temperature_correction * (ratio - 1.0) ** 2
        return float(np.clip(factor, 0.7, 1.2))

    def heating_cop(self, source: float, sink: float, part_load_ratio: float) -> float:
        """
        Heating COP for source/sink temperatures [°C].

        Returns 1.0 with a warning when the sink is not warmer than the source.
        """
        T_source, T_sink = source + KELVIN, sink + KELVIN
        if T_sink <= T_source:
            logger.warning("Invalid temperatures for heating: source=%.1f °C, sink=%.1f °C", source, sink)
            return 1.0
        cop = T_sink / (T_sink - T_source) * self.params.carnot_efficiency
        cop *= self.part_load_factor(part_load_ratio)
        cop *= self.temperature_correction(source, sink, heating=True)
        return float(np.clip(cop, 1.0, self.params.max_cop))

    def cooling_cop(self, source: float, sink: float, part_load_ratio: float) -> float:
        """Cooling EER for source (chilled loop) and sink (ground loop) temperatures [°C]."""
        T_source, T_sink = source + KELVIN, sink + KELVIN
        if T_sink <= T_source:
            logger.warning("Invalid temperatures for cooling: source=%.1f °C, sink=%.1f °C", source, sink)
            return 1.0
        eer = T_source / (T_sink - T_source) * self.params.carnot_efficiency * COOLING_CARNOT_FACTOR
        eer *= self.part_load_factor(part_load_ratio)
        eer *= self.temperature_correction(source, sink, heating=False)
        return float(np.clip(eer, 1.0, self.params.max_cop))

    def compressor_power(self, load: float, cop: float) -> float:
        """Compressor plus auxiliary power [W]."""
        if cop <= 0.0:
            return 0.0
        return load / cop + self.params.auxiliary_power

    def building_heat_loss(self, indoor: float, outdoor: float) -> float:
        """UA·(T_indoor - T_outdoor) [W], never negative."""
        return max(0.0, self.params.building_ua * (indoor - outdoor))

    def supply_temperature(self, outdoor: float) -> float:
        """Weather-compensated heating supply temperature [°C]."""
        p = self.params
        if outdoor >= p.heating_cutoff_temperature:
            return p.design_indoor_temperature
        supply = p.design_supply_temperature + p.weather_compensation_slope * (p.design_indoor_temperature - outdoor)
        return float(np.clip(supply, p.min_supply_temperature, p.max_supply_temperature))

    def record(self, heat_delivered: float, work_input: float, dt: float, heating: bool):
        self.total_heat_delivered += heat_delivered * dt
        self.total_work_input += work_input * dt
        if heating:
            self.heating_hours += dt / 3600.0
        else:
            self.cooling_hours += dt / 3600.0

    @property
    def spf(self) -> float:
        """Seasonal performance factor, delivered heat over total work."""
        if self.total_work_input <= 0.0:
            return 0.0
        return self.total_heat_delivered / self.total_work_input

    @property
    def scop(self) -> float:
        if self.total_work_input <= 0.0 or self.heating_hours <= 0.0:
            return 0.0
        return self.total_heat_delivered / self.total_work_input

    @property
    def seer(self) -> float:
        """Seasonal EER [BTU/Wh]."""
        if self.total_work_input <= 0.0 or self.cooling_hours <= 0.0:
            return 0.0
        heat_btu = self.total_heat_delivered * 3.412
        work_wh = self.total_work_input / 3600.0
        return heat_btu / work_wh


class EnhancedHVAC(PhysicsModule):
    """
    Heat pump diagnostics for each accepted step. Writes no shared fields.

    Heating mode uses the mean loop temperature as the source and the
    weather-compensated supply as the sink; cooling mode uses the chilled
    water supply as the source and the loop as the sink. The delivered load
    follows from the loop heat rate by the heat pump energy balance.
    """

    name = "hvac"
    reads = ()
    writes = ()

    def __init__(self, params: HVACParams):
        super().__init__()
        self.heat_pump = HeatPumpPerformance(params)
        self.last_cop = DEFAULT_COP
        self.last_mode = "idle"
        self.last_supply_temperature = params.design_supply_temperature
        self.last_load = 0.0
        self.last_power = 0.0
        self.last_heat_loss = 0.0

    def update_state(self, state, dt: float, context: StepContext) -> Dict[str, np.ndarray]:
        fluid = context.fluid
        boundary = context.boundary
        if fluid is None or boundary is None:
            return {}

        hp = self.heat_pump
        params = hp.params
        outdoor = boundary.outdoor_temperature - KELVIN
        loop = 0.5 * (fluid.inlet_temperature + fluid.outlet_temperature) - KELVIN
        supply = hp.supply_temperature(outdoor)
        heat_loss = hp.building_heat_loss(params.design_indoor_temperature, outdoor)
        Q = fluid.heat_rate

        if not fluid.active or abs(Q) <= MIN_LOAD:
            mode, cop, load, power = "idle", DEFAULT_COP, 0.0, 0.0
        elif Q > 0:
            mode = "heating"
            cop = hp.heating_cop(loop, supply, boundary.part_load_ratio)
            # Condenser output = evaporator input + work
            load = Q * cop / (cop - 1.0) if cop > 1.0 else Q
            power = hp.compressor_power(load, cop)
        else:
            mode = "cooling"
            supply = params.cooling_supply_temperature
            cop = hp.cooling_cop(supply, loop, boundary.part_load_ratio)
            # Rejected heat = cooling load + work
            load = -Q * cop / (cop + 1.0)
            power = hp.compressor_power(load, cop)

        if mode != "idle":
            self.stage(_pending=(load, power, dt, mode == "heating"))
        self.stage(
            last_cop=cop,
            last_mode=mode,
            last_supply_temperature=supply,
            last_load=load,
            last_power=power,
            last_heat_loss=heat_loss,
        )
        return {}

    def commit(self):
        pending = self._staged.pop("_pending", None)
        super().commit()
        if pending is not None:
            self.heat_pump.record(*pending)

    def get_diagnostics(self) -> Dict[str, float]:
        diag = super().get_diagnostics()
        hp = self.heat_pump
        diag.update(
            cop=self.last_cop,
            heating_mode=float(self.last_mode == "heating"),
            cooling_mode=float(self.last_mode == "cooling"),
            supply_temperature_c=self.last_supply_temperature,
            delivered_load_w=self.last_load,
            compressor_power_w=self.last_power,
            building_heat_loss_w=self.last_heat_loss,
            spf=hp.spf,
            scop=hp.scop,
            seer=hp.seer,
            heating_hours=hp.heating_hours,
            cooling_hours=hp.cooling_hours,
        )
        return diag
