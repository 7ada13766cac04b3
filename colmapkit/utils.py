import os
import numpy as np
from typing import Optional

# Files that must all be present for a directory to hold a model of a format
MODEL_FORMATS = {
    ".bin": ("cameras.bin", "images.bin", "points3D.bin"),
    ".txt": ("cameras.txt", "images.txt", "points3D.txt"),
}

# Sub-directories searched for a model, in order
MODEL_SUBDIRS = (("sparse", "0"), ("sparse",), ())


def detect_model_format(path: str) -> str:
    """Detect COLMAP model format in a directory.

    Returns:
        '.bin' or '.txt', preferring binary when both are complete; '' if neither.
    """
    if not os.path.isdir(path):
        return ""

    for extension, file_names in MODEL_FORMATS.items():
        if all(os.path.isfile(os.path.join(path, name)) for name in file_names):
            return extension
    return ""


def find_model_path(base_path: str) -> Optional[str]:
    """Find a COLMAP model in common directories.

    Args:
        base_path: Base directory to search in ('sparse/0', 'sparse', then itself)

    Returns:
        Path to the directory containing the model files, or None if not found
    """
    for subdir in MODEL_SUBDIRS:
        candidate = os.path.join(base_path, *subdir)
        if detect_model_format(candidate):
            return candidate
    return None


def qvec2rotmat(qvec: np.ndarray) -> np.ndarray:
    """Convert quaternion to rotation matrix.

    Args:
        qvec: Quaternion as (w, x, y, z)

    Returns:
        3x3 rotation matrix
    """
    qvec = np.asarray(qvec, dtype=np.float64)
    if qvec.shape != (4,):
        raise ValueError("qvec must have shape (4,)")

    w, x, y, z = qvec
    return np.array([
        [1 - 2 * y**2 - 2 * z**2, 2 * x * y - 2 * w * z, 2 * x * z + 2 * w * y],
        [2 * x * y + 2 * w * z, 1 - 2 * x**2 - 2 * z**2, 2 * y * z - 2 * w * x],
        [2 * x * z - 2 * w * y, 2 * y * z + 2 * w * x, 1 - 2 * x**2 - 2 * y**2],
    ], dtype=np.float64)


def rotmat2qvec(R: np.ndarray) -> np.ndarray:
    """Convert rotation matrix to quaternion.

    Args:
        R: 3x3 rotation matrix

    Returns:
        Quaternion as (w, x, y, z) with w >= 0
    """
    R = np.asarray(R, dtype=np.float64)
    if R.shape != (3, 3):
        raise ValueError("R must have shape (3, 3)")

    trace = np.trace(R)
    q = np.zeros(4, dtype=np.float64)

    if trace > 0:
        s = 0.5 / np.sqrt(trace + 1.0)
        q[0] = 0.25 / s
        q[1] = (R[2, 1] - R[1, 2]) * s
        q[2] = (R[0, 2] - R[2, 0]) * s
        q[3] = (R[1, 0] - R[0, 1]) * s
    elif R[0, 0] > R[1, 1] and R[0, 0] > R[2, 2]:
        s = 2.0 * np.sqrt(1.0 + R[0, 0] - R[1, 1] - R[2, 2])
        q[0] = (R[2, 1] - R[1, 2]) / s
        q[1] = 0.25 * s
        q[2] = (R[0, 1] + R[1, 0]) / s
        q[3] = (R[0, 2] + R[2, 0]) / s
    elif R[1, 1] > R[2, 2]:
        s = 2.0 * np.sqrt(1.0 + R[1, 1] - R[0, 0] - R[2, 2])
        q[0] = (R[0, 2] - R[2, 0]) / s
        q[1] = (R[0, 1] + R[1, 0]) / s
        q[2] = 0.25 * s
        q[3] = (R[1, 2] + R[2, 1]) / s
    else:
        s = 2.0 * np.sqrt(1.0 + R[2, 2] - R[0, 0] - R[1, 1])
        q[0] = (R[1, 0] - R[0, 1]) / s
        q[1] = (R[0, 2] + R[2, 0]) / s
        q[2] = (R[1, 2] + R[2, 1]) / s
        q[3] = 0.25 * s

    # q and -q encode the same rotation
    if q[0] < 0:
        q = -q
    return q
