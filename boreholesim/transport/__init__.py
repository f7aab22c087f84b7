"""
Finite-difference transport on the cylindrical mesh.

- kernel: numpy reference kernel and stable time step
- reduction: 256-slot max-change accumulator
- boundary: domain boundary policies (numpy and cupy)
- cpu / gpu: interchangeable backends
"""

import logging
import warnings

from ..config import Backend
from ..mesh import CylindricalMesh
from .boundary import BoundarySpec, apply_boundaries, build_boundary_spec
from .cpu import CPUTransportBackend
from .gpu import CUPY_AVAILABLE, DeviceInfo, GpuTransportBackend, discover_device
from .kernel import StencilMetrics, stable_time_step, transport_step
from .reduction import N_SLOTS, MaxChangeAccumulator, max_abs_change

logger = logging.getLogger(__name__)


def create_backend(mesh: CylindricalMesh, backend: Backend = Backend.AUTO):
    """
    Select and construct a transport backend.

    AUTO uses the GPU when a CUDA device is found and the kernels compile,
    otherwise the numpy kernel. GPU skips discovery and builds the CUDA
    backend directly. Either way an unavailable or failing GPU falls back to
    the numpy kernel with a RuntimeWarning.

    Parameters
    ----------
    mesh : CylindricalMesh
        Grid the backend buffers are sized for
    backend : Backend
        Requested backend (default: AUTO)

    Returns
    -------
    CPUTransportBackend or GpuTransportBackend
    """
    if backend == Backend.CPU:
        return CPUTransportBackend(mesh)
    device = None
    if backend == Backend.AUTO:
        device = discover_device()
        if device is None:
            logger.info("No GPU device available, using the CPU transport kernel")
            return CPUTransportBackend(mesh)
    try:
        return GpuTransportBackend(mesh, device)
    except Exception as e:
        warnings.warn(
            f"GPU backend unavailable: {e}. Falling back to the CPU kernel.",
            RuntimeWarning
        )
        logger.warning("GPU backend unavailable, using the CPU transport kernel: %s", e)
        return CPUTransportBackend(mesh)


__all__ = [
    "BoundarySpec",
    "apply_boundaries",
    "build_boundary_spec",
    "CPUTransportBackend",
    "GpuTransportBackend",
    "CUPY_AVAILABLE",
    "DeviceInfo",
    "discover_device",
    "create_backend",
    "StencilMetrics",
    "stable_time_step",
    "transport_step",
    "N_SLOTS",
    "MaxChangeAccumulator",
    "max_abs_change",
]
