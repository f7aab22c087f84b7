"""
One-dimensional circulation model for the borehole fluid legs.

The down-flow and up-flow legs are sampled at the mesh depths inside the
exchanger. Each segment between two samples carries a steady energy balance
with the neighbouring leg and, for legs in contact with the grout, with the
ground shell next to the borehole wall:

    down:  d[k](1 + NTU_g + NTU_i) - d[k-1] - NTU_g·Tg_seg - NTU_i·u_seg = 0
    up:    u[k](1 + NTU_g + NTU_i) - u[k+1] - NTU_g·Tg_seg - NTU_i·d_seg = 0

with NTU = U·P·Δz/(ṁ·cp), segment averages on the coupled side, the inlet
condition d[0] = T_in and the turnaround u[-1] = d[-1]. NTU_g is zero for a
leg that does not touch the grout. The 2n equations form one sparse M-matrix
system solved directly, so outlet temperatures respond monotonically to the
ground temperature.
"""

import logging
from dataclasses import dataclass
from typing import Optional, Tuple

import numpy as np
from scipy.sparse import coo_matrix
from scipy.sparse.linalg import spsolve

from ..config import BoreholeGeometry, FlowConfiguration, HeatExchangerType, SimulationOptions
from ..mesh import CylindricalMesh
from .heat_transfer import ExchangerCoefficients, exchanger_coefficients
from .properties import FluidProperties, WaterState

logger = logging.getLogger(__name__)

# Blend zone outside the outer pipe, as a multiple of its radius
BLEND_FACTOR = 1.2
# Property lookups stay inside liquid water
PROPERTY_T_RANGE = (274.15, 372.15)  # K


@dataclass
class FluidCirculationState:
    """
    Fluid leg temperatures for one macro step.

    Attributes
    ----------
    depths : np.ndarray
        Sample depths [m], strictly increasing
    down : np.ndarray
        Down-flow leg temperature per sample [K]
    up : np.ndarray
        Up-flow leg temperature per sample [K]
    inlet_temperature : float
        [K]
    outlet_temperature : float
        [K]
    mass_flow : float
        [kg/s]
    heat_rate : float
        Heat extracted from the ground [W], positive = extraction
    active : bool
        False when the mass flow is zero
    """
    depths: np.ndarray
    down: np.ndarray
    up: np.ndarray
    inlet_temperature: float
    outlet_temperature: float
    mass_flow: float
    heat_rate: float
    active: bool

    def __post_init__(self):
        if len(self.depths) < 2:
            raise ValueError("Fluid legs need at least two depth samples")
        if np.any(np.diff(self.depths) <= 0):
            raise ValueError("Fluid sample depths must be strictly increasing")

    def temperature_at_depth(self, depth: float, leg: str = "down") -> float:
        """
        Leg temperature at an arbitrary depth.

        Linear interpolation between bracketing samples; outside the sampled
        range the nearest endpoint value is returned (never extrapolated).

        Parameters
        ----------
        depth : float
            Depth below surface [m]
        leg : str
            "down" or "up"
        """
        if leg == "down":
            values = self.down
        elif leg == "up":
            values = self.up
        else:
            raise ValueError(f"Unknown leg '{leg}', expected 'down' or 'up'")
        return float(np.interp(depth, self.depths, values))

    @property
    def mean_temperature(self) -> float:
        return float(0.5 * (np.mean(self.down) + np.mean(self.up)))


class BoreholeFluidModel:
    """
    Steady fluid-leg solver coupled to the ground field.

    Parameters
    ----------
    geometry : BoreholeGeometry
        Exchanger geometry
    mesh : CylindricalMesh
        Ground mesh; the fluid samples are its depths inside the exchanger
    options : SimulationOptions
        Fluid fallback properties and the CoolProp switch
    properties : FluidProperties, optional
        Water property provider. Built from the options when omitted.
    """

    def __init__(
        self,
        geometry: BoreholeGeometry,
        mesh: CylindricalMesh,
        options: SimulationOptions,
        properties: Optional[FluidProperties] = None,
    ):
        self.geometry = geometry
        self.mesh = mesh
        self.properties = properties or FluidProperties(
            use_coolprop=options.use_coolprop,
            fallback_density=options.fluid_density,
            fallback_viscosity=options.fluid_viscosity,
            fallback_heat_capacity=options.fluid_specific_heat,
            fallback_conductivity=options.fluid_thermal_conductivity,
        )

        self.sample_index = np.nonzero(mesh.z <= geometry.active_depth + 1e-9)[0]
        if len(self.sample_index) < 2:
            raise ValueError(
                f"Exchanger depth {geometry.active_depth} m covers fewer than two mesh depths; "
                "increase vertical_points"
            )
        self.depths = mesh.z[self.sample_index].copy()
        self.wall_mask = np.zeros(mesh.nz, dtype=bool)
        self.wall_mask[self.sample_index] = True

        self.last_state: Optional[FluidCirculationState] = None
        self.last_coefficients: Optional[ExchangerCoefficients] = None
        self.last_water: Optional[WaterState] = None

    # -------------------------------------------------------------------------
    # Leg roles
    # -------------------------------------------------------------------------
    @property
    def _both_legs_on_ground(self) -> bool:
        return (
            self.geometry.heat_exchanger_type == HeatExchangerType.UTUBE
            or self.geometry.flow_configuration == FlowConfiguration.PARALLEL_FLOW
        )

    def _ground_contact(self) -> Tuple[float, float]:
        """Ground coupling switch for the (down, up) legs."""
        if self._both_legs_on_ground:
            return 1.0, 1.0
        if self.geometry.flow_configuration == FlowConfiguration.COUNTER_FLOW_REVERSED:
            return 1.0, 0.0
        return 0.0, 1.0

    def ground_profile(self, ground_temperature: np.ndarray) -> np.ndarray:
        """First interior shell (i = 1) averaged over θ at the sample depths."""
        return np.asarray(ground_temperature)[1][:, self.sample_index].mean(axis=0)

    # -------------------------------------------------------------------------
    # Solve
    # -------------------------------------------------------------------------
    def solve(
        self,
        ground_temperature: np.ndarray,
        inlet_temperature: float,
        mass_flow: float,
    ) -> FluidCirculationState:
        """
        Solve both legs against the current ground temperature.

        Parameters
        ----------
        ground_temperature : np.ndarray
            Ground field, shape (nr, nθ, nz) [K]
        inlet_temperature : float
            [K]
        mass_flow : float
            [kg/s]; zero or negative makes the exchanger inactive

        Returns
        -------
        FluidCirculationState
        """
        n = len(self.depths)
        if mass_flow <= 0.0:
            legs = np.full(n, float(inlet_temperature))
            state = FluidCirculationState(
                depths=self.depths.copy(),
                down=legs,
                up=legs.copy(),
                inlet_temperature=float(inlet_temperature),
                outlet_temperature=float(inlet_temperature),
                mass_flow=0.0,
                heat_rate=0.0,
                active=False,
            )
            self.last_state = state
            return state

        Tg = self.ground_profile(ground_temperature)
        T_ref = inlet_temperature if self.last_state is None else self.last_state.mean_temperature
        water = self.properties.state(float(np.clip(T_ref, *PROPERTY_T_RANGE)))
        coeffs = exchanger_coefficients(self.geometry, water, mass_flow)

        capacity = mass_flow * water.specific_heat
        dz = np.diff(self.depths)
        ntu_g = coeffs.ground_conductance * dz / capacity
        ntu_i = coeffs.internal_conductance * dz / capacity
        g_down, g_up = self._ground_contact()

        down, up = self._solve_legs(Tg, float(inlet_temperature), ntu_g, ntu_i, g_down, g_up)
        outlet = float(up[0])
        state = FluidCirculationState(
            depths=self.depths.copy(),
            down=down,
            up=up,
            inlet_temperature=float(inlet_temperature),
            outlet_temperature=outlet,
            mass_flow=float(mass_flow),
            heat_rate=float(capacity * (outlet - inlet_temperature)),
            active=True,
        )
        self.last_state = state
        self.last_coefficients = coeffs
        self.last_water = water
        logger.debug(
            "Fluid legs: T_in=%.2f K, T_out=%.2f K, Q=%.1f W", inlet_temperature, outlet, state.heat_rate
        )
        return state

    @staticmethod
    def _solve_legs(Tg, T_in, ntu_g, ntu_i, g_down, g_up):
        """Assemble and solve the 2n-unknown leg system; down = [0, n), up = [n, 2n)."""
        n = len(Tg)
        rows, cols, vals = [], [], []
        rhs = np.zeros(2 * n)

        def add(r, c, v):
            rows.append(r)
            cols.append(c)
            vals.append(v)

        # Down leg, flowing k-1 -> k through segment k-1
        add(0, 0, 1.0)
        rhs[0] = T_in
        for k in range(1, n):
            ng = g_down * ntu_g[k - 1]
            ni = ntu_i[k - 1]
            add(k, k, 1.0 + ng + ni)
            add(k, k - 1, -1.0)
            add(k, n + k, -0.5 * ni)
            add(k, n + k - 1, -0.5 * ni)
            rhs[k] = ng * 0.5 * (Tg[k] + Tg[k - 1])

        # Up leg, flowing k+1 -> k through segment k
        add(2 * n - 1, 2 * n - 1, 1.0)
        add(2 * n - 1, n - 1, -1.0)
        for k in range(n - 2, -1, -1):
            ng = g_up * ntu_g[k]
            ni = ntu_i[k]
            add(n + k, n + k, 1.0 + ng + ni)
            add(n + k, n + k + 1, -1.0)
            add(n + k, k, -0.5 * ni)
            add(n + k, k + 1, -0.5 * ni)
            rhs[n + k] = ng * 0.5 * (Tg[k] + Tg[k + 1])

        A = coo_matrix((vals, (rows, cols)), shape=(2 * n, 2 * n)).tocsr()
        x = spsolve(A, rhs)
        return x[:n].copy(), x[n:].copy()

    # -------------------------------------------------------------------------
    # Coupling to the ground
    # -------------------------------------------------------------------------
    def wall_values(self, state: FluidCirculationState) -> Tuple[Optional[np.ndarray], Optional[np.ndarray]]:
        """
        Borehole wall Dirichlet mask and values over all mesh depths.

        Returns (None, None) when the exchanger is inactive, which makes the
        wall adiabatic.
        """
        if not state.active:
            return None, None
        values = np.zeros(self.mesh.nz)
        values[self.sample_index] = self._ground_leg(state)
        return self.wall_mask.copy(), values

    def _ground_leg(self, state: FluidCirculationState) -> np.ndarray:
        if self._both_legs_on_ground:
            return 0.5 * (state.down + state.up)
        if self.geometry.flow_configuration == FlowConfiguration.COUNTER_FLOW_REVERSED:
            return state.down
        return state.up

    def temperature_at_point(
        self,
        r: float,
        theta: float,
        depth: float,
        ground_temperature: np.ndarray,
        state: Optional[FluidCirculationState] = None,
    ) -> float:
        """
        Temperature at a point of the borehole cross-section or the ground.

        Parameters
        ----------
        r : float
            Radial distance from the borehole axis [m]
        theta : float
            Angle [rad], any value (normalised into [0, 2π))
        depth : float
            Depth [m]
        ground_temperature : np.ndarray
            Ground field, shape (nr, nθ, nz) [K]
        state : FluidCirculationState, optional
            Leg temperatures. Defaults to the last solved state.

        Returns
        -------
        float
            Temperature [K]
        """
        state = state or self.last_state
        if state is None:
            raise RuntimeError("No fluid state solved yet")

        r_inner = self.geometry.inner_radius
        r_outer = self.geometry.outer_radius
        down = state.temperature_at_depth(depth, "down")
        up = state.temperature_at_depth(depth, "up")

        if self._both_legs_on_ground:
            inner_leg = outer_leg = 0.5 * (down + up)
        elif self.geometry.flow_configuration == FlowConfiguration.COUNTER_FLOW_REVERSED:
            inner_leg, outer_leg = up, down
        else:
            inner_leg, outer_leg = down, up

        if r < r_inner:
            return inner_leg
        if r < r_outer:
            return outer_leg
        r_blend = BLEND_FACTOR * r_outer
        if r < r_blend:
            ground = self.ground_at(r_blend, theta, depth, ground_temperature)
            w = (r - r_outer) / (r_blend - r_outer)
            return (1.0 - w) * outer_leg + w * ground
        return self.ground_at(r, theta, depth, ground_temperature)

    def ground_at(self, r: float, theta: float, depth: float, ground_temperature: np.ndarray) -> float:
        """
        Bilinear interpolation of the ground field in (r, θ) at the nearest
        depth node. r is clamped to the mesh extent and θ wraps periodically.
        """
        mesh = self.mesh
        T = np.asarray(ground_temperature)
        k = mesh.nearest_depth_index(depth)

        r = float(np.clip(r, mesh.r[0], mesh.r[-1]))
        i0 = int(np.clip(np.searchsorted(mesh.r, r, side="right") - 1, 0, mesh.nr - 2))
        wr = (r - mesh.r[i0]) / (mesh.r[i0 + 1] - mesh.r[i0])

        position = np.mod(theta, 2.0 * np.pi) / mesh.dtheta
        j0 = int(np.floor(position)) % mesh.ntheta
        j1 = (j0 + 1) % mesh.ntheta
        wt = position - np.floor(position)

        lower = (1.0 - wt) * T[i0, j0, k] + wt * T[i0, j1, k]
        upper = (1.0 - wt) * T[i0 + 1, j0, k] + wt * T[i0 + 1, j1, k]
        return float((1.0 - wr) * lower + wr * upper)
