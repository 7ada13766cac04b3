import math
import logging
import numpy as np

from .camera import Camera
from .distortion import project_points, unproject_points

logger = logging.getLogger(__name__)

DEFAULT_SAMPLE_COUNT = 10


class ValidationReport:
    """Reprojection error, in pixels, between a camera and its converted counterpart."""

    __slots__ = ['max_error', 'avg_error', 'sample_count']

    def __init__(self, max_error: float, avg_error: float, sample_count: int):
        self.max_error = max_error
        self.avg_error = avg_error
        self.sample_count = sample_count

    @property
    def is_valid(self) -> bool:
        return self.sample_count > 0

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, ValidationReport):
            return NotImplemented
        return (self.max_error, self.avg_error, self.sample_count) == \
               (other.max_error, other.avg_error, other.sample_count)

    __hash__ = None

    def __repr__(self) -> str:
        return (f"ValidationReport(max_error={self.max_error:.4g}, avg_error={self.avg_error:.4g}, "
                f"sample_count={self.sample_count})")


def sample_grid(width: int, height: int, sample_count: int = DEFAULT_SAMPLE_COUNT):
    """Pixel centres of an n x n grid over the image, as flat (u, v) arrays."""
    steps = (np.arange(sample_count, dtype=np.float64) + 0.5) / sample_count
    u, v = np.meshgrid(width * steps, height * steps, indexing="ij")
    return u.reshape(-1), v.reshape(-1)


def validate_conversion(src_camera: Camera, dst_camera: Camera,
                        sample_count: int = DEFAULT_SAMPLE_COUNT) -> ValidationReport:
    """
    Measures how far a converted camera moves pixels.

    Each grid pixel is unprojected through the source model and projected
    back through the destination model; the distance to the original pixel
    is the error. Samples that do not produce finite coordinates are skipped.

    Args:
        src_camera: Camera before conversion.
        dst_camera: Camera after conversion.
        sample_count: Grid samples per image dimension.

    Returns:
        ValidationReport with max/avg error over valid samples. With no valid
        sample, both errors are infinite and sample_count is 0.

    Raises:
        ValueError: If the cameras differ in size or sample_count is not positive.
    """
    if (src_camera.width, src_camera.height) != (dst_camera.width, dst_camera.height):
        raise ValueError(f"Cameras must have the same size to be compared: "
                         f"{src_camera.width}x{src_camera.height} vs {dst_camera.width}x{dst_camera.height}")
    if sample_count <= 0:
        raise ValueError(f"sample_count must be positive, got {sample_count}")

    u, v = sample_grid(src_camera.width, src_camera.height, sample_count)
    with np.errstate(all="ignore"):
        x, y = unproject_points(src_camera, u, v)
        u_dst, v_dst = project_points(dst_camera, x, y)
        errors = np.hypot(u_dst - u, v_dst - v)

    errors = errors[np.isfinite(errors)]
    if errors.size == 0:
        logger.debug("No valid samples comparing camera %d (%s) with %s",
                     src_camera.id, src_camera.model, dst_camera.model)
        return ValidationReport(math.inf, math.inf, 0)

    return ValidationReport(float(errors.max()), float(errors.mean()), int(errors.size))
