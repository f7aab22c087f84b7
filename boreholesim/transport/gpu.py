"""
CuPy backend for the transport kernel.

The CUDA source mirrors :func:`boreholesim.transport.kernel.transport_step`
expression for expression in float64, compiled without fused multiply-add so
results match the numpy path to rounding. Each thread updates one interior
node and records |ΔT| into slot ``flat_index % 256`` with an atomic max on the
IEEE-754 bit pattern (valid because |ΔT| >= 0); a one-block reduction kernel
then folds the slots into a scalar.

References
----------
CuPy RawKernel: https://docs.cupy.dev/en/stable/user_guide/kernel.html
"""

import logging
import warnings
from dataclasses import dataclass
from typing import Optional

import numpy as np

from ..mesh import CylindricalMesh
from .boundary import BoundarySpec, apply_boundaries
from .kernel import MAX_DELTA_T, T_MAX, T_MIN, StencilMetrics, stable_time_step
from .reduction import N_SLOTS

logger = logging.getLogger(__name__)

# Try to import CuPy
try:
    import cupy as cp
    CUPY_AVAILABLE = True
except ImportError:
    cp = None
    CUPY_AVAILABLE = False
    warnings.warn(
        "CuPy not available. The GPU transport backend is disabled and the numpy kernel "
        "is used instead. Install CuPy for CUDA acceleration: pip install cupy-cuda12x",
        RuntimeWarning
    )

THREADS_PER_BLOCK = 256

_KERNEL_SOURCE = r"""
extern "C" __global__
void transport_step(
    const double* T, double* T_new, const double* alpha,
    const double* r_eff, const double* dr_minus, const double* dr_plus,
    const double* dz_minus, const double* dz_plus,
    const double* velocity, const double* dispersion,
    const int use_velocity, const int use_dispersion,
    const int nr, const int nth, const int nz,
    const double dth, const double dt,
    unsigned long long* slots)
{
    const int n_int_r = nr - 2;
    const int n_int_z = nz - 2;
    const long long total = (long long)n_int_r * nth * n_int_z;
    const long long tid = (long long)blockDim.x * blockIdx.x + threadIdx.x;
    if (tid >= total) return;

    const int k = (int)(tid % n_int_z) + 1;
    const int j = (int)((tid / n_int_z) % nth);
    const int i = (int)(tid / ((long long)n_int_z * nth)) + 1;

    const int jp = (j + 1) % nth;
    const int jm = (j - 1 + nth) % nth;
    const long long idx = ((long long)i * nth + j) * nz + k;
    const long long plane = (long long)nth * nz;

    const double Tc = T[idx];
    const double Trp = T[idx + plane];
    const double Trm = T[idx - plane];
    const double Tthp = T[((long long)i * nth + jp) * nz + k];
    const double Tthm = T[((long long)i * nth + jm) * nz + k];
    const double Tzp = T[idx + 1];
    const double Tzm = T[idx - 1];

    const double r = r_eff[i];
    const double drm = dr_minus[i];
    const double drp = dr_plus[i];
    const double dzm = dz_minus[k];
    const double dzp = dz_plus[k];

    const double d2r = 2.0 * (drm * Trp - (drm + drp) * Tc + drp * Trm) / (drm * drp * (drm + drp));
    const double dTdr = (Trp - Trm) / (drp + drm);
    const double d2th = (Tthp - 2.0 * Tc + Tthm) / (r * r * dth * dth);
    const double d2z = 2.0 * (dzm * Tzp - (dzm + dzp) * Tc + dzp * Tzm) / (dzm * dzp * (dzm + dzp));
    const double lap = d2r + dTdr / r + d2th + d2z;

    double rate = alpha[idx] * lap;
    if (use_dispersion) {
        rate = rate + dispersion[idx] * lap;
    }
    if (use_velocity) {
        const long long n = (long long)nr * plane;
        const double vr = velocity[idx];
        const double vth = velocity[n + idx];
        const double vz = velocity[2 * n + idx];
        const double gr = (vr >= 0.0) ? (Tc - Trm) / drm : (Trp - Tc) / drp;
        const double gth = (vth >= 0.0) ? (Tc - Tthm) / (r * dth) : (Tthp - Tc) / (r * dth);
        const double gz = (vz >= 0.0) ? (Tc - Tzm) / dzm : (Tzp - Tc) / dzp;
        rate = rate - (vr * gr + vth * gth + vz * gz);
    }

    double delta = dt * rate;
    delta = fmin(fmax(delta, -MAX_DELTA_T), MAX_DELTA_T);
    double updated = fmin(fmax(Tc + delta, T_MIN), T_MAX);
    T_new[idx] = updated;

    const double change = fabs(updated - Tc);
    atomicMax(&slots[idx % N_SLOTS], (unsigned long long)__double_as_longlong(change));
}

extern "C" __global__
void reduce_slots(const unsigned long long* slots, double* out)
{
    __shared__ double buf[N_SLOTS];
    const int t = threadIdx.x;
    buf[t] = __longlong_as_double((long long)slots[t]);
    __syncthreads();
    for (int s = N_SLOTS / 2; s > 0; s >>= 1) {
        if (t < s) buf[t] = fmax(buf[t], buf[t + s]);
        __syncthreads();
    }
    if (t == 0) out[0] = buf[0];
}
"""


def _kernel_source() -> str:
    defines = (
        f"#define MAX_DELTA_T {MAX_DELTA_T!r}\n"
        f"#define T_MIN {T_MIN!r}\n"
        f"#define T_MAX {T_MAX!r}\n"
        f"#define N_SLOTS {N_SLOTS}\n"
    )
    return defines + _KERNEL_SOURCE


@dataclass
class DeviceInfo:
    """Compute device found by :func:`discover_device`."""
    kind: str
    name: str
    device_id: int
    total_memory: int


def discover_device() -> Optional[DeviceInfo]:
    """
    Find a compute device for the transport kernel.

    Prefers a CUDA GPU. CuPy exposes no CPU-class compute device, so when no
    GPU is found this reports unavailable (None) and callers fall back to the
    numpy kernel. Never raises.
    """
    if not CUPY_AVAILABLE:
        return None
    try:
        count = cp.cuda.runtime.getDeviceCount()
        if count < 1:
            logger.info("No CUDA device found")
            return None
        props = cp.cuda.runtime.getDeviceProperties(0)
    except Exception as e:
        logger.warning("CUDA device discovery failed: %s", e)
        return None
    name = props.get("name", b"cuda")
    if isinstance(name, bytes):
        name = name.decode(errors="replace")
    return DeviceInfo(kind="gpu", name=name, device_id=0, total_memory=int(props.get("totalGlobalMem", 0)))


class GpuTransportBackend:
    """
    CUDA transport backend.

    Device buffers are allocated once per mesh in the constructor. Use as a
    context manager; :meth:`close` releases every buffer and runs on every
    exit path, including a failure part-way through construction.

    Parameters
    ----------
    mesh : CylindricalMesh
        Grid and material arrays
    device : DeviceInfo, optional
        Device to run on. Discovered when omitted.

    Raises
    ------
    ImportError
        If CuPy is not installed
    RuntimeError
        If no CUDA device is available or the kernels fail to compile
    """

    name = "gpu"

    def __init__(self, mesh: CylindricalMesh, device: Optional[DeviceInfo] = None):
        if not CUPY_AVAILABLE:
            raise ImportError("CuPy requested but not available")
        device = device or discover_device()
        if device is None:
            raise RuntimeError("No CUDA device available")

        self.device = device
        self.metrics = StencilMetrics.from_mesh(mesh)
        self.shape = mesh.shape
        self._closed = False
        self._boundaries = None
        self._alpha_host = mesh.diffusivity()
        self._velocity_host = None
        self._dispersion_host = None
        self._buffers = {}
        try:
            with cp.cuda.Device(device.device_id):
                self._allocate(mesh)
                module = cp.RawModule(code=_kernel_source(), options=("--fmad=false",))
                self._step_kernel = module.get_function("transport_step")
                self._reduce_kernel = module.get_function("reduce_slots")
        except Exception:
            self.close()
            raise
        logger.info("GPU transport backend ready on %s (%d nodes)", device.name, mesh.size)

    def _allocate(self, mesh: CylindricalMesh) -> None:
        m = self.metrics
        b = self._buffers
        b["T"] = cp.zeros(self.shape, dtype=cp.float64)
        b["T_new"] = cp.zeros(self.shape, dtype=cp.float64)
        b["alpha"] = cp.asarray(self._alpha_host)
        b["velocity"] = cp.zeros((3,) + self.shape, dtype=cp.float64)
        b["dispersion"] = cp.zeros(self.shape, dtype=cp.float64)
        b["r_eff"] = cp.asarray(m.r_eff)
        b["dr_minus"] = cp.asarray(m.dr_minus)
        b["dr_plus"] = cp.asarray(m.dr_plus)
        b["dz_minus"] = cp.asarray(m.dz_minus)
        b["dz_plus"] = cp.asarray(m.dz_plus)
        b["slots"] = cp.zeros(N_SLOTS, dtype=cp.uint64)
        b["result"] = cp.zeros(1, dtype=cp.float64)

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()
        return False

    def close(self) -> None:
        """Release all device buffers. Safe to call more than once."""
        if self._closed:
            return
        self._closed = True
        self._buffers = {}
        self._boundaries = None
        self._step_kernel = None
        self._reduce_kernel = None

    def _require_open(self) -> None:
        if self._closed:
            raise RuntimeError("GPU backend is closed")

    @property
    def array_module(self):
        return cp

    def set_diffusivity(self, alpha: np.ndarray) -> None:
        self._require_open()
        self._alpha_host = np.ascontiguousarray(alpha, dtype=np.float64)
        self._buffers["alpha"].set(self._alpha_host)

    def set_transport_fields(self, velocity=None, dispersion=None) -> None:
        """Upload velocity/dispersion; call only when they changed."""
        self._require_open()
        self._velocity_host = None if velocity is None else np.ascontiguousarray(velocity, dtype=np.float64)
        self._dispersion_host = None if dispersion is None else np.ascontiguousarray(dispersion, dtype=np.float64)
        if self._velocity_host is not None:
            self._buffers["velocity"].set(self._velocity_host)
        if self._dispersion_host is not None:
            self._buffers["dispersion"].set(self._dispersion_host)

    def upload(self, temperature: np.ndarray) -> None:
        """Synchronous host-to-device copy of the temperature field."""
        self._require_open()
        self._buffers["T"].set(np.ascontiguousarray(temperature, dtype=np.float64))
        cp.cuda.Stream.null.synchronize()

    def download(self) -> np.ndarray:
        """Synchronous device-to-host copy of the temperature field."""
        self._require_open()
        out = cp.asnumpy(self._buffers["T"])
        cp.cuda.Stream.null.synchronize()
        return out

    @property
    def device_temperature(self):
        return self._buffers["T"]

    def stable_time_step(self, safety: float) -> float:
        return stable_time_step(
            self._alpha_host, self.metrics, self._velocity_host, self._dispersion_host, safety
        )

    def iterate(self, dt: float) -> float:
        """One kernel pass on the device field; returns the reduced max change."""
        self._require_open()
        b = self._buffers
        nr, nth, nz = self.shape
        n_interior = (nr - 2) * nth * (nz - 2)
        blocks = (n_interior + THREADS_PER_BLOCK - 1) // THREADS_PER_BLOCK

        b["slots"].fill(0)
        cp.copyto(b["T_new"], b["T"])
        self._step_kernel(
            (blocks,), (THREADS_PER_BLOCK,),
            (
                b["T"], b["T_new"], b["alpha"],
                b["r_eff"], b["dr_minus"], b["dr_plus"], b["dz_minus"], b["dz_plus"],
                b["velocity"], b["dispersion"],
                np.int32(self._velocity_host is not None),
                np.int32(self._dispersion_host is not None),
                np.int32(nr), np.int32(nth), np.int32(nz),
                np.float64(self.metrics.dtheta), np.float64(dt),
                b["slots"],
            ),
        )
        self._reduce_kernel((1,), (N_SLOTS,), (b["slots"], b["result"]))
        max_change = float(b["result"].get()[0])
        b["T"], b["T_new"] = b["T_new"], b["T"]
        return max_change

    def set_boundaries(self, spec: BoundarySpec) -> None:
        """Upload the step's boundary values."""
        self._require_open()
        self._boundaries = spec.to_device(cp)

    def apply_boundaries(self) -> None:
        self._require_open()
        if self._boundaries is None:
            raise RuntimeError("Boundary values not set")
        apply_boundaries(self._buffers["T"], self._boundaries, xp=cp)
