"""
Convective and conductive heat transfer coefficients for the exchanger legs.

Film coefficients use the constant-flux laminar Nusselt number (4.36) below
Re = 2300 and the Gnielinski correlation with the Petukhov friction factor
above it. Wall, grout and film resistances are combined in series per unit
length of borehole.

References
----------
Gnielinski, V. (1976): New equations for heat and mass transfer in turbulent
    pipe and channel flow
Petukhov, B. S. (1970): Heat transfer and friction in turbulent pipe flow
"""

from dataclasses import dataclass

import numpy as np

from ..config import BoreholeGeometry, HeatExchangerType
from .properties import WaterState

LAMINAR_NUSSELT = 4.36
TRANSITION_REYNOLDS = 2300.0
# Film coefficient assumed on the annulus side of the coaxial inner pipe [W/(m²·K)]
ANNULUS_FILM_COEFFICIENT = 1500.0
GROUND_U_RANGE = (10.0, 2500.0)  # W/(m²·K)


def reynolds_number(mass_flow: float, hydraulic_diameter: float, flow_area: float, viscosity: float) -> float:
    """
    Reynolds number for a mass flow through a channel.

        Re = ṁ · D_h / (A · μ)

    Parameters
    ----------
    mass_flow : float
        Mass flow rate [kg/s]
    hydraulic_diameter : float
        Hydraulic diameter [m]
    flow_area : float
        Flow cross-section [m²]
    viscosity : float
        Dynamic viscosity [Pa·s]

    Returns
    -------
    float
        Reynolds number [-]
    """
    if flow_area <= 0 or viscosity <= 0:
        raise ValueError("Flow area and viscosity must be positive")
    return abs(mass_flow) * hydraulic_diameter / (flow_area * viscosity)


def nusselt_number(Re: float, Pr: float) -> float:
    """
    Nusselt number for fully developed pipe flow.

    For Re < 2300 the constant heat flux value 4.36 is used. Otherwise:

        f  = (0.79 ln Re - 1.64)^-2
        Nu = (f/8)(Re - 1000) Pr / (1 + 12.7 √(f/8) (Pr^(2/3) - 1))

    The turbulent branch is floored at the laminar value so Nu does not drop
    across the transition.
    """
    if Re < TRANSITION_REYNOLDS:
        return LAMINAR_NUSSELT
    f = (0.79 * np.log(Re) - 1.64) ** -2
    Nu = (f / 8.0) * (Re - 1000.0) * Pr / (1.0 + 12.7 * np.sqrt(f / 8.0) * (Pr ** (2.0 / 3.0) - 1.0))
    return float(max(LAMINAR_NUSSELT, Nu))


def film_coefficient(mass_flow: float, hydraulic_diameter: float, flow_area: float, water: WaterState) -> float:
    """Convective film coefficient h = Nu·k/D_h [W/(m²·K)]."""
    Re = reynolds_number(mass_flow, hydraulic_diameter, flow_area, water.viscosity)
    Nu = nusselt_number(Re, water.prandtl)
    return Nu * water.thermal_conductivity / hydraulic_diameter


def cylinder_wall_resistance(r_in: float, r_out: float, conductivity: float) -> float:
    """Conduction resistance of a cylindrical shell per unit length [m·K/W]."""
    if r_out <= r_in:
        return 0.0
    return np.log(r_out / r_in) / (2.0 * np.pi * conductivity)


def pipe_pair_shape_factor(spacing: float, radius: float) -> float:
    """
    Conduction shape factor per unit length between two parallel cylinders.

        S = 2π / arccosh((s² - 2a²) / (2a²))

    Parameters
    ----------
    spacing : float
        Centre-to-centre distance s [m]
    radius : float
        Cylinder radius a [m]
    """
    if spacing <= 2.0 * radius:
        raise ValueError("Cylinders overlap: spacing must exceed the diameter")
    return 2.0 * np.pi / np.arccosh((spacing ** 2 - 2.0 * radius ** 2) / (2.0 * radius ** 2))


@dataclass
class ExchangerCoefficients:
    """
    Heat transfer coefficients of one exchanger for one fluid state.

    Attributes
    ----------
    ground_u : float
        Leg-to-borehole-wall U, referred to the ground-side pipe perimeter
        [W/(m²·K)]
    ground_perimeter : float
        Perimeter ground_u refers to [m]
    internal_u : float
        Leg-to-leg U, referred to internal_perimeter [W/(m²·K)]
    internal_perimeter : float
        [m]
    """
    ground_u: float
    ground_perimeter: float
    internal_u: float
    internal_perimeter: float

    @property
    def ground_conductance(self) -> float:
        """Per unit length [W/(m·K)]."""
        return self.ground_u * self.ground_perimeter

    @property
    def internal_conductance(self) -> float:
        """Per unit length [W/(m·K)]."""
        return self.internal_u * self.internal_perimeter


def coaxial_coefficients(geometry: BoreholeGeometry, water: WaterState, mass_flow: float) -> ExchangerCoefficients:
    """
    Coaxial exchanger: annulus-to-wall and inner-pipe-to-annulus coefficients.

    The annulus side sees film, casing wall and grout resistances; the inner
    pipe side sees its own film, the inner pipe wall and a fixed annulus film.
    """
    r_i = geometry.inner_radius
    r_w = geometry.inner_pipe_outer_radius
    r_o = geometry.outer_radius
    r_c = r_o + geometry.casing_wall_thickness
    r_b = geometry.radius

    # Annulus leg to borehole wall
    annulus_area = np.pi * (r_o ** 2 - r_w ** 2)
    annulus_dh = 2.0 * (r_o - r_w)
    h_annulus = film_coefficient(mass_flow, annulus_dh, annulus_area, water)
    R_ground = (
        1.0 / (h_annulus * 2.0 * np.pi * r_o)
        + cylinder_wall_resistance(r_o, r_c, geometry.pipe_conductivity)
        + cylinder_wall_resistance(r_c, r_b, geometry.grout_conductivity)
    )
    ground_perimeter = 2.0 * np.pi * r_o
    ground_u = float(np.clip(1.0 / (R_ground * ground_perimeter), *GROUND_U_RANGE))

    # Inner pipe to annulus
    h_inner = film_coefficient(mass_flow, 2.0 * r_i, np.pi * r_i ** 2, water)
    R_internal = (
        1.0 / (h_inner * 2.0 * np.pi * r_i)
        + cylinder_wall_resistance(r_i, r_w, geometry.pipe_conductivity)
        + 1.0 / (ANNULUS_FILM_COEFFICIENT * 2.0 * np.pi * r_w)
    )
    internal_perimeter = 2.0 * np.pi * r_i
    internal_u = 1.0 / (R_internal * internal_perimeter)

    return ExchangerCoefficients(ground_u, ground_perimeter, internal_u, internal_perimeter)


def utube_coefficients(geometry: BoreholeGeometry, water: WaterState, mass_flow: float) -> ExchangerCoefficients:
    """
    U-tube exchanger: per-leg leg-to-wall coefficient and the leg-to-leg
    coupling through the grout (two-cylinder shape factor).
    """
    r_i = geometry.inner_radius
    r_o = geometry.outer_radius
    r_b = geometry.radius

    h = film_coefficient(mass_flow, 2.0 * r_i, np.pi * r_i ** 2, water)
    R_leg = 1.0 / (h * 2.0 * np.pi * r_i) + cylinder_wall_resistance(r_i, r_o, geometry.pipe_conductivity)

    R_ground = R_leg + cylinder_wall_resistance(r_o, r_b, geometry.grout_conductivity)
    ground_perimeter = 2.0 * np.pi * r_o
    ground_u = float(np.clip(1.0 / (R_ground * ground_perimeter), *GROUND_U_RANGE))

    G_grout = geometry.grout_conductivity * pipe_pair_shape_factor(geometry.pipe_spacing, r_o)
    R_internal = 2.0 * R_leg + 1.0 / G_grout
    internal_u = 1.0 / (R_internal * ground_perimeter)

    return ExchangerCoefficients(ground_u, ground_perimeter, internal_u, ground_perimeter)


def exchanger_coefficients(geometry: BoreholeGeometry, water: WaterState, mass_flow: float) -> ExchangerCoefficients:
    """Coefficients for the configured exchanger type."""
    if geometry.heat_exchanger_type == HeatExchangerType.UTUBE:
        return utube_coefficients(geometry, water, mass_flow)
    return coaxial_coefficients(geometry, water, mass_flow)
