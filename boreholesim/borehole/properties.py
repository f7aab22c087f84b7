"""
Thermophysical properties of the circulating water.

CoolProp wrapper for temperature-dependent water properties, with graceful
fallback to constant values if CoolProp is unavailable or a call fails.

References
----------
CoolProp: http://www.coolprop.org/
"""

import warnings
from dataclasses import dataclass
from typing import Optional

# Try to import CoolProp
try:
    from CoolProp.CoolProp import PropsSI
    COOLPROP_AVAILABLE = True
except ImportError:
    COOLPROP_AVAILABLE = False
    warnings.warn(
        "CoolProp not available. Using constant fallback values for water properties. "
        "Install CoolProp for temperature-dependent properties: pip install CoolProp",
        RuntimeWarning
    )

# Loop pressure used for property lookups [Pa]; a closed loop sits a few bar
# above atmospheric and water properties barely depend on it
LOOP_PRESSURE = 3e5


@dataclass
class WaterState:
    """Water properties at one temperature."""
    density: float               # kg/m³
    viscosity: float             # Pa·s
    specific_heat: float         # J/(kg·K)
    thermal_conductivity: float  # W/(m·K)

    @property
    def prandtl(self) -> float:
        return self.viscosity * self.specific_heat / self.thermal_conductivity


class FluidProperties:
    """
    Wrapper for water thermophysical properties.

    Uses CoolProp if available, otherwise falls back to constant values.

    Parameters
    ----------
    use_coolprop : bool, optional
        Force use of CoolProp (raises error if unavailable). Default: True if available.
    fallback_density : float, optional
        Fallback density [kg/m³]. Default: 1000.0
    fallback_viscosity : float, optional
        Fallback dynamic viscosity [Pa·s]. Default: 1e-3
    fallback_heat_capacity : float, optional
        Fallback specific heat capacity [J/(kg·K)]. Default: 4186.0
    fallback_conductivity : float, optional
        Fallback thermal conductivity [W/(m·K)]. Default: 0.6
    """

    def __init__(
        self,
        use_coolprop: Optional[bool] = None,
        fallback_density: float = 1000.0,
        fallback_viscosity: float = 1e-3,
        fallback_heat_capacity: float = 4186.0,
        fallback_conductivity: float = 0.6,
    ):
        if use_coolprop is None:
            self.use_coolprop = COOLPROP_AVAILABLE
        else:
            self.use_coolprop = use_coolprop
            if use_coolprop and not COOLPROP_AVAILABLE:
                raise ImportError("CoolProp requested but not available")

        self.fallback_density = fallback_density
        self.fallback_viscosity = fallback_viscosity
        self.fallback_heat_capacity = fallback_heat_capacity
        self.fallback_conductivity = fallback_conductivity

        # Fluid identifier for CoolProp
        self.fluid = "Water"

    def _props(self, key: str, T: float, P: float, fallback: float) -> float:
        if not self.use_coolprop:
            return fallback
        try:
            return float(PropsSI(key, 'T', T, 'P', P, self.fluid))
        except Exception as e:
            warnings.warn(f"CoolProp failed: {e}. Using fallback value.", RuntimeWarning)
            return fallback

    def get_density(self, T: float, P: float = LOOP_PRESSURE) -> float:
        """Density [kg/m³] at temperature T [K] and pressure P [Pa]."""
        return self._props('D', T, P, self.fallback_density)

    def get_viscosity(self, T: float, P: float = LOOP_PRESSURE) -> float:
        """Dynamic viscosity [Pa·s] at temperature T [K] and pressure P [Pa]."""
        return self._props('V', T, P, self.fallback_viscosity)

    def get_heat_capacity(self, T: float, P: float = LOOP_PRESSURE) -> float:
        """Specific heat capacity at constant pressure [J/(kg·K)]."""
        return self._props('C', T, P, self.fallback_heat_capacity)

    def get_conductivity(self, T: float, P: float = LOOP_PRESSURE) -> float:
        """Thermal conductivity [W/(m·K)]."""
        return self._props('L', T, P, self.fallback_conductivity)

    def state(self, T: float, P: float = LOOP_PRESSURE) -> WaterState:
        """
        All properties needed by the heat transfer correlations.

        Parameters
        ----------
        T : float
            Temperature [K]
        P : float, optional
            Pressure [Pa]

        Returns
        -------
        WaterState
        """
        return WaterState(
            density=self.get_density(T, P),
            viscosity=self.get_viscosity(T, P),
            specific_heat=self.get_heat_capacity(T, P),
            thermal_conductivity=self.get_conductivity(T, P),
        )
