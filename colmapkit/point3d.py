import numpy as np
from numpy.typing import NDArray
from typing import Tuple, List, Union


class Point3D:
    """
    A triangulated 3D point of a COLMAP model.

    The track is held as two parallel read-only arrays: `image_ids[i]` is an
    image observing the point and `point2D_idxs[i]` the index of the matching
    observation inside that image. A negative error means it is unknown.
    """

    id: int
    error: float

    xyz: NDArray[np.float64]           # (3,)
    rgb: NDArray[np.uint8]             # (3,)
    image_ids: NDArray[np.uint32]      # (T,)
    point2D_idxs: NDArray[np.uint32]   # (T,)

    def __init__(self, id: int,
                 xyz: Union[NDArray[np.float64], Tuple[float, float, float]],
                 rgb: Union[NDArray[np.uint8], Tuple[int, int, int]],
                 error: float,
                 image_ids: Union[NDArray[np.uint32], List[int]],
                 point2D_idxs: Union[NDArray[np.uint32], List[int]]):
        """
        Args:
            id: Point identifier (unsigned 64-bit).
            xyz: World coordinates.
            rgb: Colour, 0-255 per channel.
            error: Mean reprojection error in pixels, negative if unknown.
            image_ids: Observing image of each track element.
            point2D_idxs: Observation index of each track element.
        """
        self.id = int(id)
        self.error = float(error)
        self.xyz = np.array(xyz, dtype=np.float64)
        self.rgb = np.array(rgb, dtype=np.uint8)
        self.image_ids = np.array(image_ids, dtype=np.uint32).reshape(-1)
        self.point2D_idxs = np.array(point2D_idxs, dtype=np.uint32).reshape(-1)

        if self.xyz.shape != (3,) or self.rgb.shape != (3,):
            raise ValueError("xyz and rgb must have shape (3,)")
        if len(self.image_ids) != len(self.point2D_idxs):
            raise ValueError(f"Track has {len(self.image_ids)} image IDs but "
                             f"{len(self.point2D_idxs)} point2D indices")

        for array in (self.xyz, self.rgb, self.image_ids, self.point2D_idxs):
            array.setflags(write=False)

    def get_track(self) -> List[Tuple[int, int]]:
        """Returns the track as (image_id, point2D_idx) pairs."""
        return list(zip(self.image_ids.tolist(), self.point2D_idxs.tolist()))

    def get_track_length(self) -> int:
        return len(self.image_ids)

    def has_valid_error(self) -> bool:
        return self.error >= 0

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Point3D):
            return NotImplemented
        if self.id != other.id or len(self.image_ids) != len(other.image_ids):
            return False

        return bool(np.allclose(self.xyz, other.xyz)
                    and np.isclose(self.error, other.error)
                    and np.array_equal(self.rgb, other.rgb)
                    and np.array_equal(self.image_ids, other.image_ids)
                    and np.array_equal(self.point2D_idxs, other.point2D_idxs))

    def __hash__(self) -> int:
        return hash(self.id)

    def __repr__(self) -> str:
        x, y, z = self.xyz.tolist()
        return (f"Point3D(id={self.id}, xyz=({x:.3f}, {y:.3f}, {z:.3f}), "
                f"rgb={tuple(self.rgb.tolist())}, track_length={self.get_track_length()})")
