"""
Centralized configuration for borehole heat exchanger simulations.

This module defines the parameter dataclasses consumed by the mesh builder,
the transport solver, the borehole fluid model and the physics modules.
Units are SI (meters, kg, seconds, Pascals, Kelvin, Watts) unless otherwise
noted.

Configuration Groups:
    - BoreholeGeometry: Well and pipe dimensions, exchanger layout
    - SimulationOptions: Feature toggles, domain, numerics, fluid, ground,
      boundary conditions
    - Module parameters: Multiphase, fractured media, AMR, HVAC, geomechanics
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional, Sequence, Tuple

import numpy as np


class HeatExchangerType(Enum):
    """Borehole heat exchanger layout."""
    COAXIAL = "coaxial"
    UTUBE = "u_tube"


class FlowConfiguration(Enum):
    """Flow direction through the exchanger legs."""
    COUNTER_FLOW = "counter_flow"                    # down inner pipe, up annulus
    COUNTER_FLOW_REVERSED = "counter_flow_reversed"  # down annulus, up inner pipe
    PARALLEL_FLOW = "parallel_flow"


class BoundaryCondition(Enum):
    """Domain boundary policy."""
    DIRICHLET = "dirichlet"
    ADIABATIC = "adiabatic"
    NEUMANN = "neumann"


class Backend(Enum):
    """Transport kernel backend selection."""
    AUTO = "auto"
    CPU = "cpu"
    GPU = "gpu"


@dataclass
class GroundLayer:
    """
    Horizontal ground layer overriding the uniform ground properties.

    Attributes
    ----------
    top : float
        Layer top depth [m]
    bottom : float
        Layer bottom depth [m]
    conductivity : float
        Thermal conductivity [W/(m·K)]
    density : float
        Bulk density [kg/m³]
    specific_heat : float
        Specific heat capacity [J/(kg·K)]
    porosity : float
        Porosity [-]
    permeability : float
        Intrinsic permeability [m²]
    """
    top: float
    bottom: float
    conductivity: float = 2.5
    density: float = 2650.0
    specific_heat: float = 1000.0
    porosity: float = 0.10
    permeability: float = 1e-14

    def __post_init__(self):
        if self.bottom <= self.top:
            raise ValueError(f"Layer bottom ({self.bottom} m) must be below its top ({self.top} m)")


@dataclass
class FluidCompositionEntry:
    """
    Dissolved species able to precipitate as a mineral.

    Attributes
    ----------
    species : str
        Species / mineral name
    concentration : float
        Dissolved concentration [mol/m³]
    reference_solubility : float
        Equilibrium concentration at the reference temperature [mol/m³]
    dissolution_enthalpy : float
        Van 't Hoff enthalpy of dissolution [J/mol]. Negative values give
        retrograde solubility (calcite-like).
    rate_constant : float
        Kinetic rate constant [mol/(m²·s)]
    molar_volume : float
        Mineral molar volume [m³/mol]
    specific_surface : float
        Reactive surface per bulk volume [m²/m³]
    reference_temperature : float
        Reference temperature for the solubility [K]
    """
    species: str
    concentration: float
    reference_solubility: float
    dissolution_enthalpy: float = -10e3
    rate_constant: float = 1e-9
    molar_volume: float = 3.69e-5
    specific_surface: float = 100.0
    reference_temperature: float = 298.15

    def __post_init__(self):
        if self.concentration < 0:
            raise ValueError(f"Concentration of {self.species} must be non-negative")
        if self.reference_solubility <= 0:
            raise ValueError(f"Reference solubility of {self.species} must be positive")


@dataclass
class BoreholeGeometry:
    """
    Borehole and exchanger geometry.

    Attributes
    ----------
    depth : float
        Borehole depth [m] (default: 100)
    well_diameter : float
        Borehole diameter [m] (default: 0.15)
    heat_exchanger_type : HeatExchangerType
        Coaxial or U-tube (default: COAXIAL)
    flow_configuration : FlowConfiguration
        Flow direction through the legs (default: COUNTER_FLOW)
    pipe_inner_diameter : float
        Inner pipe diameter [m] (default: 0.032)
    pipe_outer_diameter : float
        Outer pipe diameter [m] (default: 0.040). For coaxial exchangers this is
        the inner diameter of the outer pipe and the annulus lies between the
        inner pipe wall and it. For U-tubes it is the leg outer diameter.
    pipe_spacing : float
        Shank spacing between U-tube leg centres [m] (default: 0.080)
    pipe_conductivity : float
        Pipe wall conductivity [W/(m·K)] (default: 0.4, HDPE)
    grout_conductivity : float
        Grout conductivity [W/(m·K)] (default: 2.0)
    heat_exchanger_depth : float, optional
        Depth of the active exchanger [m]. Defaults to the borehole depth.
    inner_pipe_wall_thickness : float
        Wall thickness of the coaxial inner pipe [m] (default: 0.002)
    casing_wall_thickness : float
        Wall thickness of the coaxial outer pipe, outside pipe_outer_diameter [m]
        (default: 0.003)
    """
    depth: float = 100.0  # m
    well_diameter: float = 0.15  # m
    heat_exchanger_type: HeatExchangerType = HeatExchangerType.COAXIAL
    flow_configuration: FlowConfiguration = FlowConfiguration.COUNTER_FLOW
    pipe_inner_diameter: float = 0.032  # m
    pipe_outer_diameter: float = 0.040  # m
    pipe_spacing: float = 0.080  # m
    pipe_conductivity: float = 0.4  # W/(m·K)
    grout_conductivity: float = 2.0  # W/(m·K)
    heat_exchanger_depth: Optional[float] = None  # m
    inner_pipe_wall_thickness: float = 0.002  # m
    casing_wall_thickness: float = 0.003  # m

    def __post_init__(self):
        if self.depth <= 0:
            raise ValueError("Borehole depth must be positive")
        if self.well_diameter <= 0:
            raise ValueError("Well diameter must be positive")
        if not 0 < self.pipe_inner_diameter < self.pipe_outer_diameter:
            raise ValueError("Pipe diameters must satisfy 0 < inner < outer")
        if self.pipe_outer_diameter >= self.well_diameter:
            raise ValueError("Outer pipe must fit inside the borehole")
        if self.heat_exchanger_type == HeatExchangerType.UTUBE:
            if self.pipe_spacing <= self.pipe_outer_diameter:
                raise ValueError("U-tube pipe spacing must exceed the pipe outer diameter")
            if self.pipe_spacing / 2.0 + self.outer_radius >= self.radius:
                raise ValueError("U-tube legs must fit inside the borehole")
        else:
            if self.inner_pipe_outer_radius >= self.outer_radius:
                raise ValueError("Coaxial inner pipe wall leaves no annulus")
            if self.outer_radius + self.casing_wall_thickness >= self.radius:
                raise ValueError("Coaxial outer pipe must fit inside the borehole")
        if self.heat_exchanger_depth is not None and not 0 < self.heat_exchanger_depth <= self.depth:
            raise ValueError("Heat exchanger depth must lie within the borehole")

    @property
    def radius(self) -> float:
        """Borehole radius [m]."""
        return self.well_diameter / 2.0

    @property
    def inner_radius(self) -> float:
        """Inner pipe radius [m]."""
        return self.pipe_inner_diameter / 2.0

    @property
    def outer_radius(self) -> float:
        """Outer pipe radius [m]."""
        return self.pipe_outer_diameter / 2.0

    @property
    def inner_pipe_outer_radius(self) -> float:
        """Outer radius of the coaxial inner pipe [m]."""
        return self.inner_radius + self.inner_pipe_wall_thickness

    @property
    def active_depth(self) -> float:
        """Depth over which the fluid exchanges heat with the ground [m]."""
        return self.depth if self.heat_exchanger_depth is None else self.heat_exchanger_depth


@dataclass
class MultiphaseParams:
    """
    Multiphase flow parameters (Corey / van Genuchten).

    Attributes
    ----------
    residual_water_saturation : float
        Swr [-] (default: 0.2)
    residual_gas_saturation : float
        Sgr [-] (default: 0.05)
    corey_exponent_water : float
        (default: 2.0)
    corey_exponent_gas : float
        (default: 2.0)
    van_genuchten_alpha : float
        [1/Pa] (default: 1e-4)
    van_genuchten_n : float
        (default: 2.0)
    salinity : float
        Mass fraction of dissolved salt [-] (default: 0.035)
    initial_water_saturation : float
        (default: 1.0)
    """
    residual_water_saturation: float = 0.2
    residual_gas_saturation: float = 0.05
    corey_exponent_water: float = 2.0
    corey_exponent_gas: float = 2.0
    van_genuchten_alpha: float = 1e-4  # 1/Pa
    van_genuchten_n: float = 2.0
    salinity: float = 0.035
    initial_water_saturation: float = 1.0

    def __post_init__(self):
        if self.residual_water_saturation + self.residual_gas_saturation >= 1.0:
            raise ValueError("Residual saturations must sum to less than one")
        if self.van_genuchten_n <= 1.0:
            raise ValueError("van Genuchten n must exceed 1")


@dataclass
class FractureParams:
    """
    Dual-continuum fractured media parameters.

    Attributes
    ----------
    aperture : float
        Fracture aperture [m] (default: 1e-4)
    spacing : float
        Fracture spacing [m] (default: 1.0)
    density : float
        Fracture density [1/m] (default: 3.0)
    fracture_sets : int
        Number of orthogonal fracture sets (default: 3)
    matrix_porosity : float
        (default: 0.05)
    matrix_permeability : float
        [m²] (default: 1e-18)
    """
    aperture: float = 1e-4  # m
    spacing: float = 1.0  # m
    density: float = 3.0  # 1/m
    fracture_sets: int = 3
    matrix_porosity: float = 0.05
    matrix_permeability: float = 1e-18  # m²

    def __post_init__(self):
        if self.spacing <= 0 or self.aperture <= 0:
            raise ValueError("Fracture spacing and aperture must be positive")


@dataclass
class AMRParams:
    """
    Adaptive mesh refinement thresholds.

    Attributes
    ----------
    temperature_gradient_threshold : float
        [K/m] (default: 5.0)
    pressure_gradient_threshold : float
        [Pa/m] (default: 1e5)
    saturation_gradient_threshold : float
        [1/m] (default: 0.1)
    borehole_refinement_radius : float
        [m] (default: 1.0)
    max_refinement_level : int
        (default: 3)
    refinement_interval : int
        Steps between refinement passes (default: 10)
    front_lower : float
        Lower bound of the tracked thermal front band [-] (default: 0.1)
    front_upper : float
        Upper bound of the tracked thermal front band [-] (default: 0.9)
    """
    temperature_gradient_threshold: float = 5.0  # K/m
    pressure_gradient_threshold: float = 1e5  # Pa/m
    saturation_gradient_threshold: float = 0.1  # 1/m
    borehole_refinement_radius: float = 1.0  # m
    max_refinement_level: int = 3
    refinement_interval: int = 10
    front_lower: float = 0.1
    front_upper: float = 0.9

    def __post_init__(self):
        if self.refinement_interval < 1:
            raise ValueError("Refinement interval must be at least one step")


@dataclass
class HVACParams:
    """
    Heat pump performance parameters. Temperatures in °C as in HVAC practice.

    Attributes
    ----------
    carnot_efficiency : float
        Fraction of the Carnot COP achieved (default: 0.45)
    max_cop : float
        (default: 6.0)
    cycling_degradation : float
        Part-load degradation coefficient Cd (default: 0.20)
    minimum_plr : float
        (default: 0.25)
    temperature_correction : float
        (default: 0.15)
    auxiliary_power : float
        Pumps and fans [W] (default: 500)
    building_ua : float
        Building heat loss coefficient [W/K] (default: 300)
    design_indoor_temperature : float
        [°C] (default: 20)
    design_supply_temperature : float
        [°C] (default: 35)
    min_supply_temperature : float
        [°C] (default: 25)
    max_supply_temperature : float
        [°C] (default: 55)
    heating_cutoff_temperature : float
        [°C] (default: 15)
    weather_compensation_slope : float
        (default: 1.5)
    cooling_supply_temperature : float
        Chilled water supply in cooling mode [°C] (default: 7)
    """
    carnot_efficiency: float = 0.45
    max_cop: float = 6.0
    cycling_degradation: float = 0.20
    minimum_plr: float = 0.25
    temperature_correction: float = 0.15
    auxiliary_power: float = 500.0  # W
    building_ua: float = 300.0  # W/K
    design_indoor_temperature: float = 20.0  # °C
    design_supply_temperature: float = 35.0  # °C
    min_supply_temperature: float = 25.0  # °C
    max_supply_temperature: float = 55.0  # °C
    heating_cutoff_temperature: float = 15.0  # °C
    weather_compensation_slope: float = 1.5
    cooling_supply_temperature: float = 7.0  # °C


@dataclass
class GeomechanicsParams:
    """Thermoelastic constants for the reported thermal stress field."""
    youngs_modulus: float = 30e9  # Pa
    poissons_ratio: float = 0.25
    thermal_expansion: float = 8e-6  # 1/K


@dataclass
class SimulationOptions:
    """
    Simulation options for a single borehole run.

    All parameters in SI units unless otherwise noted.

    Attributes
    ----------
    Feature toggles:
        simulate_groundwater_flow, enable_multiphase, enable_fractured_media,
        enable_amr, enable_reactive_transport, enable_time_varying_bc,
        enable_enhanced_hvac : bool
            All default to False.

    Domain and grid:
        domain_radius : float
            Outer radius of the cylindrical domain [m] (default: 50)
        domain_extension : float
            Domain depth below the borehole bottom [m] (default: 20)
        radial_points, angular_points, vertical_points : int
            Node counts (default: 50, 36, 100)

    Time stepping:
        simulation_time : float
            Duration [s] (default: 1 year)
        time_step : float
            Macro step [s] (default: 3600)
        save_interval : int
            Steps between field snapshots (default: 24)
        convergence_tolerance : float
            Max nodal change below which a step cut short by the iteration
            cap still counts as converged [K] (default: 1e-3)
        max_iterations_per_step : int
            Kernel iteration cap per macro step (default: 100)
        stability_safety : float
            Fraction of the explicit stability limit used as inner dt (default: 0.9)

    Fluid:
        fluid_mass_flow_rate : float
            [kg/s] (default: 0.5)
        fluid_inlet_temperature : float
            [K] (default: 283.15)
        fluid_specific_heat, fluid_density, fluid_viscosity,
        fluid_thermal_conductivity : float
            Water fallback values (4186, 1000, 1e-3, 0.6)
        use_coolprop : bool, optional
            Force CoolProp on/off. Default: use it when installed.

    Ground:
        ground_conductivity, ground_density, ground_specific_heat : float
            (2.5 W/(m·K), 2650 kg/m³, 1000 J/(kg·K))
        ground_porosity, ground_permeability : float
            (0.10, 1e-14 m²)
        longitudinal_dispersivity, transverse_dispersivity : float
            [m] (0.5, 0.05)
        layers : list of GroundLayer
        surface_temperature : float
            [K] (default: 283.15)
        geothermal_gradient : float
            [K/m] (default: 0.03)
        initial_temperature_profile : list of (depth, temperature)
            Overrides the gradient when given.

    Groundwater:
        groundwater_velocity : tuple of float
            Regional Darcy flux (x, y, z) [m/s]
        hydraulic_head_top, hydraulic_head_bottom : float
            [m] (0, -10)

    Boundaries:
        outer_boundary : BoundaryCondition
            DIRICHLET or ADIABATIC (default: DIRICHLET)
        outer_boundary_temperature : float, optional
            Defaults to the undisturbed temperature at each depth.
        top_boundary : BoundaryCondition
            (default: ADIABATIC)
        top_boundary_temperature : float, optional
            Defaults to the surface temperature.
        bottom_boundary : BoundaryCondition
            NEUMANN applies the geothermal heat flux (default: NEUMANN)
        bottom_boundary_temperature : float, optional
        geothermal_heat_flux : float
            [W/m²] (default: 0.065)

    Loads:
        seasonal_energy_curve : sequence of 365 floats, optional
            Daily energy [kWh/day], positive = charging
        btes_charging_temperature, btes_discharging_temperature : float
            [K] (353.15, 278.15)
        outdoor_mean_temperature, outdoor_amplitude : float
            [K], [K] (283.15, 10)
        coldest_day : int
            Day of year of the outdoor minimum (default: 15)

    Reactive transport:
        fluid_composition : list of FluidCompositionEntry

    Backend:
        backend : Backend
            (default: AUTO)
    """

    # =========================================================================
    # Feature toggles
    # =========================================================================
    simulate_groundwater_flow: bool = False
    enable_multiphase: bool = False
    enable_fractured_media: bool = False
    enable_amr: bool = False
    enable_reactive_transport: bool = False
    enable_time_varying_bc: bool = False
    enable_enhanced_hvac: bool = False

    # =========================================================================
    # Domain and grid
    # =========================================================================
    domain_radius: float = 50.0             # m
    domain_extension: float = 20.0          # m below the borehole
    radial_points: int = 50
    angular_points: int = 36
    vertical_points: int = 100

    # =========================================================================
    # Time stepping
    # =========================================================================
    simulation_time: float = 31536000.0     # s (1 year)
    time_step: float = 3600.0               # s
    save_interval: int = 24                 # steps
    convergence_tolerance: float = 1e-3     # K
    max_iterations_per_step: int = 100
    stability_safety: float = 0.9

    # =========================================================================
    # Fluid
    # =========================================================================
    fluid_mass_flow_rate: float = 0.5       # kg/s
    fluid_inlet_temperature: float = 283.15  # K
    fluid_specific_heat: float = 4186.0     # J/(kg·K)
    fluid_density: float = 1000.0           # kg/m³
    fluid_viscosity: float = 1e-3           # Pa·s
    fluid_thermal_conductivity: float = 0.6  # W/(m·K)
    use_coolprop: Optional[bool] = None

    # =========================================================================
    # Ground
    # =========================================================================
    ground_conductivity: float = 2.5        # W/(m·K)
    ground_density: float = 2650.0          # kg/m³
    ground_specific_heat: float = 1000.0    # J/(kg·K)
    ground_porosity: float = 0.10
    ground_permeability: float = 1e-14      # m²
    longitudinal_dispersivity: float = 0.5  # m
    transverse_dispersivity: float = 0.05   # m
    layers: List[GroundLayer] = field(default_factory=list)
    surface_temperature: float = 283.15     # K
    geothermal_gradient: float = 0.03       # K/m
    initial_temperature_profile: List[Tuple[float, float]] = field(default_factory=list)

    # =========================================================================
    # Groundwater
    # =========================================================================
    groundwater_velocity: Tuple[float, float, float] = (0.0, 0.0, 0.0)  # m/s
    hydraulic_head_top: float = 0.0         # m
    hydraulic_head_bottom: float = -10.0    # m

    # =========================================================================
    # Boundaries
    # =========================================================================
    outer_boundary: BoundaryCondition = BoundaryCondition.DIRICHLET
    outer_boundary_temperature: Optional[float] = None
    top_boundary: BoundaryCondition = BoundaryCondition.ADIABATIC
    top_boundary_temperature: Optional[float] = None
    bottom_boundary: BoundaryCondition = BoundaryCondition.NEUMANN
    bottom_boundary_temperature: Optional[float] = None
    geothermal_heat_flux: float = 0.065     # W/m²

    # =========================================================================
    # Loads
    # =========================================================================
    seasonal_energy_curve: Optional[Sequence[float]] = None  # kWh/day
    btes_charging_temperature: float = 353.15     # K
    btes_discharging_temperature: float = 278.15  # K
    outdoor_mean_temperature: float = 283.15      # K
    outdoor_amplitude: float = 10.0               # K
    coldest_day: int = 15

    # =========================================================================
    # Reactive transport
    # =========================================================================
    fluid_composition: List[FluidCompositionEntry] = field(default_factory=list)

    # =========================================================================
    # Module parameters
    # =========================================================================
    multiphase: MultiphaseParams = field(default_factory=MultiphaseParams)
    fracture: FractureParams = field(default_factory=FractureParams)
    amr: AMRParams = field(default_factory=AMRParams)
    hvac: HVACParams = field(default_factory=HVACParams)
    geomechanics: GeomechanicsParams = field(default_factory=GeomechanicsParams)

    backend: Backend = Backend.AUTO

    def __post_init__(self):
        if self.radial_points < 3 or self.vertical_points < 3 or self.angular_points < 1:
            raise ValueError(
                "Grid needs at least 3 radial, 1 angular and 3 vertical nodes "
                f"(got {self.radial_points}x{self.angular_points}x{self.vertical_points})"
            )
        if self.domain_radius <= 0:
            raise ValueError("Domain radius must be positive")
        if self.simulation_time <= 0 or self.time_step <= 0:
            raise ValueError("Simulation time and time step must be positive")
        if self.save_interval < 1:
            raise ValueError("Save interval must be at least one step")
        if self.max_iterations_per_step < 1:
            raise ValueError("Iteration cap must be at least one")
        if not 0 < self.stability_safety <= 1:
            raise ValueError("Stability safety factor must be in (0, 1]")
        if self.outer_boundary == BoundaryCondition.NEUMANN:
            raise ValueError(
                "Outer radial Neumann boundary is not supported; use DIRICHLET or ADIABATIC"
            )
        if self.top_boundary == BoundaryCondition.NEUMANN:
            raise ValueError("Top boundary must be DIRICHLET or ADIABATIC")
        if self.seasonal_energy_curve is not None and len(self.seasonal_energy_curve) != 365:
            raise ValueError("Seasonal energy curve must hold 365 daily values")
        if self.initial_temperature_profile:
            depths = [d for d, _ in self.initial_temperature_profile]
            if any(b <= a for a, b in zip(depths, depths[1:])):
                raise ValueError("Initial temperature profile depths must be strictly increasing")

    # =========================================================================
    # Derived Properties
    # =========================================================================
    @property
    def n_steps(self) -> int:
        """Number of macro steps."""
        return int(np.ceil(self.simulation_time / self.time_step - 1e-9))

    @property
    def grid_shape(self) -> Tuple[int, int, int]:
        """(nr, nθ, nz)."""
        return (self.radial_points, self.angular_points, self.vertical_points)

    def undisturbed_temperature(self, depth):
        """
        Undisturbed ground temperature at depth.

        Parameters
        ----------
        depth : float or np.ndarray
            Depth below surface [m]

        Returns
        -------
        float or np.ndarray
            Temperature [K]
        """
        depth = np.asarray(depth, dtype=float)
        if self.initial_temperature_profile:
            depths, temps = zip(*self.initial_temperature_profile)
            return np.interp(depth, depths, temps)
        return self.surface_temperature + self.geothermal_gradient * depth
