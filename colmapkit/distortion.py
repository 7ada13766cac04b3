"""
Forward and inverse lens distortion in normalized camera coordinates.

All functions accept scalars or arrays (broadcast together) and return
float64 arrays. Inversions are iterative and never raise: a sample whose
Jacobian becomes singular, or which has not converged after MAX_ITERATIONS
steps, keeps its last estimate.
"""
import numpy as np
from numpy.typing import ArrayLike, NDArray
from typing import Tuple

from .camera import Camera
from .types import CameraModelType

MAX_ITERATIONS = 20
TOLERANCE = 1e-10

# |det J| (radial) or |d theta_d / d theta| (fisheye) below this halts a sample
SINGULAR_EPSILON = 1e-15

# Radii below this are treated as the optical axis
MIN_RADIUS = 1e-10

# FOV limits below which the series expansions of the closed form are used
FOV_EPSILON = 1e-4

Points = Tuple[NDArray[np.float64], NDArray[np.float64]]


def _as_arrays(x: ArrayLike, y: ArrayLike) -> Points:
    x, y = np.broadcast_arrays(np.asarray(x, dtype=np.float64), np.asarray(y, dtype=np.float64))
    return x.astype(np.float64, copy=True), y.astype(np.float64, copy=True)


def _rational_radial(r2, k1, k2, k3, k4, k5, k6):
    """Radial factor N(r2) / D(r2) and its derivative with respect to r2."""
    r4 = r2 * r2
    r6 = r4 * r2
    num = 1.0 + k1 * r2 + k2 * r4 + k3 * r6
    den = 1.0 + k4 * r2 + k5 * r4 + k6 * r6
    dnum = k1 + 2.0 * k2 * r2 + 3.0 * k3 * r4
    dden = k4 + 2.0 * k5 * r2 + 3.0 * k6 * r4
    return num / den, (dnum * den - num * dden) / (den * den)


def _distort_with_jacobian(x, y, k1, k2, p1, p2, k3, k4, k5, k6):
    r2 = x * x + y * y
    radial, dradial = _rational_radial(r2, k1, k2, k3, k4, k5, k6)
    xd = x * radial + 2.0 * p1 * x * y + p2 * (r2 + 2.0 * x * x)
    yd = y * radial + p1 * (r2 + 2.0 * y * y) + 2.0 * p2 * x * y

    drad_dx = dradial * 2.0 * x
    drad_dy = dradial * 2.0 * y
    j00 = radial + x * drad_dx + 2.0 * p1 * y + 6.0 * p2 * x
    j01 = x * drad_dy + 2.0 * p1 * x + 2.0 * p2 * y
    j10 = y * drad_dx + 2.0 * p1 * x + 2.0 * p2 * y
    j11 = radial + y * drad_dy + 6.0 * p1 * y + 2.0 * p2 * x
    return xd, yd, (j00, j01, j10, j11)


def apply_radial_distortion(x: ArrayLike, y: ArrayLike, k1: float, k2: float = 0.0,
                            p1: float = 0.0, p2: float = 0.0) -> Points:
    """
    Radial + tangential (Brown-Conrady) distortion:
    x' = x(1 + k1 r^2 + k2 r^4) + 2 p1 x y + p2 (r^2 + 2 x^2), and symmetrically for y.
    """
    x, y = _as_arrays(x, y)
    xd, yd, _ = _distort_with_jacobian(x, y, k1, k2, p1, p2, 0.0, 0.0, 0.0, 0.0)
    return xd, yd


def apply_rational_distortion(x: ArrayLike, y: ArrayLike, k1: float, k2: float, p1: float, p2: float,
                              k3: float, k4: float, k5: float, k6: float) -> Points:
    """FULL_OPENCV distortion: radial factor (1 + k1 r^2 + k2 r^4 + k3 r^6) / (1 + k4 r^2 + k5 r^4 + k6 r^6)."""
    x, y = _as_arrays(x, y)
    xd, yd, _ = _distort_with_jacobian(x, y, k1, k2, p1, p2, k3, k4, k5, k6)
    return xd, yd


def _newton_undistort(xd, yd, coeffs, max_iterations: int, tolerance: float) -> Points:
    x, y = xd.copy(), yd.copy()
    active = np.ones(x.shape, dtype=bool)

    for _ in range(max_iterations):
        fx_, fy_, (j00, j01, j10, j11) = _distort_with_jacobian(x, y, *coeffs)
        res_x = fx_ - xd
        res_y = fy_ - yd
        det = j00 * j11 - j01 * j10

        converged = (np.abs(res_x) < tolerance) & (np.abs(res_y) < tolerance)
        singular = ~(np.abs(det) >= SINGULAR_EPSILON)
        active &= ~converged & ~singular
        if not active.any():
            break

        safe_det = np.where(active, det, 1.0)
        x = np.where(active, x - (j11 * res_x - j01 * res_y) / safe_det, x)
        y = np.where(active, y - (-j10 * res_x + j00 * res_y) / safe_det, y)

    return x, y


def remove_radial_distortion(xd: ArrayLike, yd: ArrayLike, k1: float, k2: float = 0.0,
                             p1: float = 0.0, p2: float = 0.0,
                             max_iterations: int = MAX_ITERATIONS, tolerance: float = TOLERANCE) -> Points:
    """
    Inverse of apply_radial_distortion by 2x2 Newton-Raphson, starting from
    the distorted point.
    """
    xd, yd = _as_arrays(xd, yd)
    return _newton_undistort(xd, yd, (k1, k2, p1, p2, 0.0, 0.0, 0.0, 0.0), max_iterations, tolerance)


def remove_rational_distortion(xd: ArrayLike, yd: ArrayLike, k1: float, k2: float, p1: float, p2: float,
                               k3: float, k4: float, k5: float, k6: float,
                               max_iterations: int = MAX_ITERATIONS, tolerance: float = TOLERANCE) -> Points:
    """Inverse of apply_rational_distortion."""
    xd, yd = _as_arrays(xd, yd)
    return _newton_undistort(xd, yd, (k1, k2, p1, p2, k3, k4, k5, k6), max_iterations, tolerance)


def apply_fisheye_distortion(x: ArrayLike, y: ArrayLike, k1: float, k2: float = 0.0,
                             k3: float = 0.0, k4: float = 0.0) -> Points:
    """
    Equidistant fisheye distortion on the polar angle theta = atan(r):
    theta_d = theta (1 + k1 theta^2 + k2 theta^4 + k3 theta^6 + k4 theta^8),
    and (x, y) is rescaled by theta_d / r.
    """
    x, y = _as_arrays(x, y)
    r = np.hypot(x, y)
    theta = np.arctan(r)
    theta2 = theta * theta
    theta_d = theta * (1.0 + theta2 * (k1 + theta2 * (k2 + theta2 * (k3 + theta2 * k4))))

    on_axis = r < MIN_RADIUS
    scale = np.where(on_axis, 1.0, theta_d / np.where(on_axis, 1.0, r))
    return x * scale, y * scale


def remove_fisheye_distortion(xd: ArrayLike, yd: ArrayLike, k1: float, k2: float = 0.0,
                              k3: float = 0.0, k4: float = 0.0,
                              max_iterations: int = MAX_ITERATIONS, tolerance: float = TOLERANCE) -> Points:
    """
    Inverse of apply_fisheye_distortion: scalar Newton-Raphson on theta,
    then r = tan(theta).
    """
    xd, yd = _as_arrays(xd, yd)
    rd = np.hypot(xd, yd)
    theta = rd.copy()
    active = np.ones(theta.shape, dtype=bool)

    for _ in range(max_iterations):
        theta2 = theta * theta
        theta4 = theta2 * theta2
        theta6 = theta4 * theta2
        theta8 = theta4 * theta4
        f = theta * (1.0 + k1 * theta2 + k2 * theta4 + k3 * theta6 + k4 * theta8) - rd
        df = 1.0 + 3.0 * k1 * theta2 + 5.0 * k2 * theta4 + 7.0 * k3 * theta6 + 9.0 * k4 * theta8

        active &= ~(np.abs(df) < SINGULAR_EPSILON)
        if not active.any():
            break
        delta = np.where(active, f / np.where(active, df, 1.0), 0.0)
        theta = theta - delta
        active &= ~(np.abs(delta) < tolerance)
        if not active.any():
            break

    on_axis = rd < MIN_RADIUS
    scale = np.where(on_axis, 1.0, np.tan(theta) / np.where(on_axis, 1.0, rd))
    return xd * scale, yd * scale


def apply_fov_distortion(x: ArrayLike, y: ArrayLike, omega: float) -> Points:
    """FOV (field of view) distortion: r_d = atan(2 r tan(omega / 2)) / omega."""
    x, y = _as_arrays(x, y)
    r2 = x * x + y * y

    if omega * omega < FOV_EPSILON:
        factor = 1.0 + omega * omega / 12.0 - (omega * omega * r2) / 3.0
    else:
        tan_half_omega = np.tan(omega / 2.0)
        radius = np.sqrt(r2)
        near_axis = r2 < FOV_EPSILON
        series = (-2.0 * tan_half_omega * (4.0 * r2 * tan_half_omega ** 2 - 3.0)) / (3.0 * omega)
        closed = np.arctan(radius * 2.0 * tan_half_omega) / (np.where(near_axis, 1.0, radius) * omega)
        factor = np.where(near_axis, series, closed)
    return x * factor, y * factor


def remove_fov_distortion(xd: ArrayLike, yd: ArrayLike, omega: float) -> Points:
    """Closed-form inverse of apply_fov_distortion: r = tan(r_d omega) / (2 tan(omega / 2))."""
    xd, yd = _as_arrays(xd, yd)
    rd2 = xd * xd + yd * yd

    if omega * omega < FOV_EPSILON:
        factor = 1.0 - omega * omega / 12.0 + (omega * omega * rd2) / 3.0
    else:
        tan_half_omega = np.tan(omega / 2.0)
        radius_d = np.sqrt(rd2)
        near_axis = rd2 < FOV_EPSILON
        series = (omega * (omega * omega * rd2 + 3.0)) / (6.0 * tan_half_omega)
        closed = np.tan(radius_d * omega) / (np.where(near_axis, 1.0, radius_d) * 2.0 * tan_half_omega)
        factor = np.where(near_axis, series, closed)
    return xd * factor, yd * factor


def _focal_and_center(camera: Camera) -> Tuple[float, float, float, float]:
    intrinsics = camera.get_intrinsics()
    return intrinsics["fx"], intrinsics["fy"], intrinsics["cx"], intrinsics["cy"]


def unproject_points(camera: Camera, u: ArrayLike, v: ArrayLike) -> Points:
    """
    Pixel coordinates -> undistorted normalized camera coordinates.

    Thin-prism terms are ignored. Models without a distortion implementation
    are treated as pinhole.
    """
    fx, fy, cx, cy = _focal_and_center(camera)
    u, v = _as_arrays(u, v)
    xd = (u - cx) / fx
    yd = (v - cy) / fy
    d = camera.get_intrinsics()
    model = camera.model_type

    if model in (CameraModelType.SIMPLE_RADIAL, CameraModelType.RADIAL, CameraModelType.OPENCV):
        return remove_radial_distortion(xd, yd, d["k1"], d["k2"], d["p1"], d["p2"])
    if model == CameraModelType.FULL_OPENCV:
        return remove_rational_distortion(xd, yd, d["k1"], d["k2"], d["p1"], d["p2"],
                                          d["k3"], d["k4"], d["k5"], d["k6"])
    if model == CameraModelType.FOV:
        return remove_fov_distortion(xd, yd, d["omega"])
    if model in (CameraModelType.SIMPLE_RADIAL_FISHEYE, CameraModelType.RADIAL_FISHEYE,
                 CameraModelType.OPENCV_FISHEYE, CameraModelType.THIN_PRISM_FISHEYE):
        return remove_fisheye_distortion(xd, yd, d["k1"], d["k2"], d["k3"], d["k4"])
    return xd, yd


def project_points(camera: Camera, x: ArrayLike, y: ArrayLike) -> Points:
    """
    Normalized camera coordinates -> distorted pixel coordinates.
    Inverse of unproject_points, with the same model coverage.
    """
    fx, fy, cx, cy = _focal_and_center(camera)
    x, y = _as_arrays(x, y)
    d = camera.get_intrinsics()
    model = camera.model_type

    if model in (CameraModelType.SIMPLE_RADIAL, CameraModelType.RADIAL, CameraModelType.OPENCV):
        x, y = apply_radial_distortion(x, y, d["k1"], d["k2"], d["p1"], d["p2"])
    elif model == CameraModelType.FULL_OPENCV:
        x, y = apply_rational_distortion(x, y, d["k1"], d["k2"], d["p1"], d["p2"],
                                         d["k3"], d["k4"], d["k5"], d["k6"])
    elif model == CameraModelType.FOV:
        x, y = apply_fov_distortion(x, y, d["omega"])
    elif model in (CameraModelType.SIMPLE_RADIAL_FISHEYE, CameraModelType.RADIAL_FISHEYE,
                   CameraModelType.OPENCV_FISHEYE, CameraModelType.THIN_PRISM_FISHEYE):
        x, y = apply_fisheye_distortion(x, y, d["k1"], d["k2"], d["k3"], d["k4"])

    return x * fx + cx, y * fy + cy
