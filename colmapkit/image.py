import numpy as np
from typing import Optional, Tuple, List, Union, Sequence
from numpy.typing import NDArray

from .utils import qvec2rotmat
from .types import INVALID_POINT3D_ID


def _frozen(array: np.ndarray) -> np.ndarray:
    array.setflags(write=False)
    return array


class Image:
    """
    Represents image extrinsic parameters and features.

    The pose (`qvec`, `tvec`) is the world-to-camera rigid transform. Features
    (`xys`, `point3D_ids`) are NumPy arrays; unmatched observations carry
    INVALID_POINT3D_ID. A "lite" image keeps only the observation count
    (`num_points2D`) and has `xys`/`point3D_ids` set to None.
    All arrays are read-only.
    """

    id: int
    name: str
    camera_id: int

    xys: Optional[NDArray[np.float64]]          # Shape: (N, 2), dtype=float64
    point3D_ids: Optional[NDArray[np.int64]]    # Shape: (N,), dtype=int64

    qvec: NDArray[np.float64] # Shape: (4,), dtype=float64 [w, x, y, z]
    tvec: NDArray[np.float64] # Shape: (3,), dtype=float64 [x, y, z]

    num_points2D: int

    def __init__(self, id: int, name: str, camera_id: int,
                 qvec: Union[NDArray[np.float64], Sequence[float]],
                 tvec: Union[NDArray[np.float64], Sequence[float]],
                 xys: Optional[Union[NDArray[np.float64], Sequence]] = None,
                 point3D_ids: Optional[Union[NDArray[np.int64], Sequence[int]]] = None,
                 num_points2D: Optional[int] = None):
        """
        Initializes an Image instance.

        Args:
            id: Unique image identifier.
            name: Image file name.
            camera_id: ID of the camera used for this image.
            qvec: Quaternion rotation [w, x, y, z].
            tvec: Translation vector [x, y, z].
            xys: (N, 2) 2D feature points, or None for a lite image.
            point3D_ids: (N,) corresponding 3D point IDs, or None for a lite image.
            num_points2D: Observation count. Required for lite images, must
                          match N otherwise.
        """
        qvec_arr = np.array(qvec, dtype=np.float64)
        tvec_arr = np.array(tvec, dtype=np.float64)
        if qvec_arr.shape != (4,) or tvec_arr.shape != (3,):
            raise ValueError("qvec must have shape (4,) and tvec shape (3,)")

        if (xys is None) != (point3D_ids is None):
            raise ValueError("xys and point3D_ids must both be given or both be None")

        if xys is not None:
            xys_arr = np.array(xys, dtype=np.float64)
            if xys_arr.size == 0:
                xys_arr = xys_arr.reshape(0, 2)
            ids_arr = np.array(point3D_ids, dtype=np.int64).reshape(-1)
            if xys_arr.ndim != 2 or xys_arr.shape[1] != 2:
                raise ValueError("xys must be an Nx2 array")
            if ids_arr.shape[0] != xys_arr.shape[0]:
                raise ValueError(f"Number of 2D points ({xys_arr.shape[0]}) does not match number of 3D point IDs ({ids_arr.shape[0]})")
            if num_points2D is not None and num_points2D != xys_arr.shape[0]:
                raise ValueError(f"num_points2D ({num_points2D}) does not match number of 2D points ({xys_arr.shape[0]})")
            self.xys = _frozen(xys_arr)
            self.point3D_ids = _frozen(ids_arr)
            self.num_points2D = int(xys_arr.shape[0])
        else:
            self.xys = None
            self.point3D_ids = None
            self.num_points2D = int(num_points2D) if num_points2D is not None else 0

        self.id = int(id)
        self.name = name
        self.camera_id = int(camera_id)
        self.qvec = _frozen(qvec_arr)
        self.tvec = _frozen(tvec_arr)

    @property
    def has_points2D(self) -> bool:
        """False for images loaded in lite mode."""
        return self.xys is not None

    def get_rotation_matrix(self) -> np.ndarray:
        """Get rotation matrix from quaternion."""
        return qvec2rotmat(self.qvec)

    def get_world_to_camera_matrix(self) -> np.ndarray:
        """Get world-to-camera transformation matrix.

        Returns:
            4x4 transformation matrix
        """
        transform = np.eye(4, dtype=np.float64)
        transform[:3, :3] = self.get_rotation_matrix()
        transform[:3, 3] = self.tvec
        return transform

    def get_camera_to_world_matrix(self) -> np.ndarray:
        """Get camera-to-world transformation matrix.

        Returns:
            4x4 transformation matrix
        """
        # C2W = [R.T | -R.T @ t]
        R_T = self.get_rotation_matrix().T
        transform = np.eye(4, dtype=np.float64)
        transform[:3, :3] = R_T
        transform[:3, 3] = -R_T @ self.tvec
        return transform

    def get_camera_center(self) -> np.ndarray:
        """Get camera center in world coordinates.

        Returns:
            Camera center as (x, y, z)
        """
        # C = -R' * t
        return -self.get_rotation_matrix().T @ self.tvec

    def num_observations(self) -> int:
        """Counts the number of 2D features in this image (available in lite mode too)."""
        return self.num_points2D

    def num_valid_observations(self) -> int:
        """Counts the number of 2D features with valid 3D correspondences.

        Lite images have no correspondences loaded and report 0.
        """
        if self.point3D_ids is None:
            return 0
        return int(np.count_nonzero(self.point3D_ids != INVALID_POINT3D_ID))

    def get_valid_points3D(self) -> List[Tuple[int, Tuple[float, float]]]:
        """
        Returns a list of (point3D_id, (x, y)) tuples for features that have a
        valid 3D point correspondence.
        """
        if self.xys is None:
            return []
        valid_mask = self.point3D_ids != INVALID_POINT3D_ID
        return [(int(p3d_id), (float(xy[0]), float(xy[1])))
                for p3d_id, xy in zip(self.point3D_ids[valid_mask], self.xys[valid_mask])]

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Image):
            return NotImplemented

        if self.has_points2D != other.has_points2D or self.num_points2D != other.num_points2D:
            return False

        same = self.id == other.id and \
            self.name == other.name and \
            self.camera_id == other.camera_id and \
            np.allclose(self.qvec, other.qvec) and \
            np.allclose(self.tvec, other.tvec)
        if same and self.has_points2D:
            same = np.allclose(self.xys, other.xys) and \
                np.array_equal(self.point3D_ids, other.point3D_ids)
        return bool(same)

    def __hash__(self) -> int:
        return hash((self.id, self.name, self.camera_id))

    def __repr__(self) -> str:
        return f"Image(id={self.id}, name='{self.name}', camera_id={self.camera_id}, {self.num_points2D} features)"
