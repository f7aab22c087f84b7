"""
Borehole heat exchanger: water properties, heat transfer coefficients and the
fluid-leg circulation model.
"""

from .circulation import BoreholeFluidModel, FluidCirculationState
from .heat_transfer import ExchangerCoefficients, exchanger_coefficients, nusselt_number
from .properties import COOLPROP_AVAILABLE, FluidProperties, WaterState

__all__ = [
    "BoreholeFluidModel",
    "FluidCirculationState",
    "ExchangerCoefficients",
    "exchanger_coefficients",
    "nusselt_number",
    "COOLPROP_AVAILABLE",
    "FluidProperties",
    "WaterState",
]
