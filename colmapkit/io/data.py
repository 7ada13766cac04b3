import numpy as np
from typing import Dict, Mapping, Optional
from numpy.typing import NDArray

from ..point3d import Point3D


class Point3DArrays:
    """
    Column-wise storage of a set of 3D points with tracks in CSR form.

    The track of point `i` is `track_image_ids[track_offsets[i]:track_offsets[i + 1]]`
    (and the same slice of `track_point2D_idxs`).
    """

    __slots__ = ['num_points', 'ids', 'xyzs', 'rgbs', 'errors',
                 'track_offsets', 'track_image_ids', 'track_point2D_idxs']

    num_points: int
    ids: NDArray[np.uint64]                 # Shape (M,)
    xyzs: NDArray[np.float64]               # Shape (M, 3)
    rgbs: NDArray[np.uint8]                 # Shape (M, 3)
    errors: NDArray[np.float64]             # Shape (M,)
    track_offsets: NDArray[np.uint32]       # Shape (M + 1,)
    track_image_ids: NDArray[np.uint32]     # Shape (TotalTrackLen,)
    track_point2D_idxs: NDArray[np.uint32]  # Shape (TotalTrackLen,)

    def __init__(self, xyzs, rgbs, errors, track_offsets, track_image_ids, track_point2D_idxs,
                 ids: Optional[NDArray[np.uint64]] = None):
        """
        Args:
            xyzs: (M, 3) positions, or a flat array of 3 * M values.
            rgbs: (M, 3) colors, either 0-255 integers or 0-1 floats.
            errors: (M,) reprojection errors.
            track_offsets: (M + 1,) CSR offsets into the flattened track arrays.
            track_image_ids: Flattened track image ids.
            track_point2D_idxs: Flattened track point2D indices.
            ids: (M,) point ids. Defaults to 1..M when not given.

        Raises:
            ValueError: If the array sizes are inconsistent.
        """
        xyzs = np.asarray(xyzs, dtype=np.float64).reshape(-1, 3)
        num_points = xyzs.shape[0]

        rgbs = np.asarray(rgbs).reshape(-1, 3)
        if np.issubdtype(rgbs.dtype, np.floating):
            # Normalized colors are rescaled to 0..255
            rgbs = np.clip(np.round(rgbs * 255.0), 0, 255)
        rgbs = rgbs.astype(np.uint8)

        errors = np.asarray(errors, dtype=np.float64).reshape(-1)
        track_offsets = np.asarray(track_offsets, dtype=np.uint32).reshape(-1)
        track_image_ids = np.asarray(track_image_ids, dtype=np.uint32).reshape(-1)
        track_point2D_idxs = np.asarray(track_point2D_idxs, dtype=np.uint32).reshape(-1)

        if ids is None:
            ids = np.arange(1, num_points + 1, dtype=np.uint64)
        ids = np.asarray(ids, dtype=np.uint64).reshape(-1)

        if rgbs.shape[0] != num_points or errors.shape[0] != num_points or ids.shape[0] != num_points:
            raise ValueError("xyzs, rgbs, errors and ids must describe the same number of points")
        if track_offsets.shape[0] != num_points + 1:
            raise ValueError(f"track_offsets must have {num_points + 1} entries, got {track_offsets.shape[0]}")
        if track_image_ids.shape != track_point2D_idxs.shape:
            raise ValueError("track_image_ids and track_point2D_idxs must have the same length")
        if num_points > 0 and (np.any(np.diff(track_offsets.astype(np.int64)) < 0) or
                               track_offsets[-1] > track_image_ids.shape[0]):
            raise ValueError("track_offsets must be non-decreasing and within the track arrays")

        self.num_points = num_points
        self.ids = ids
        self.xyzs = xyzs
        self.rgbs = rgbs
        self.errors = errors
        self.track_offsets = track_offsets
        self.track_image_ids = track_image_ids
        self.track_point2D_idxs = track_point2D_idxs

    def get_track_lengths(self) -> NDArray[np.int64]:
        return np.diff(self.track_offsets.astype(np.int64))


def points3D_to_arrays(points3D: Mapping[int, Point3D]) -> Point3DArrays:
    """Flatten a point map (sorted by id) into CSR arrays."""
    points = sorted(points3D.values(), key=lambda pt: pt.id)
    num_points = len(points)

    track_lengths = np.array([pt.get_track_length() for pt in points], dtype=np.int64)
    track_offsets = np.zeros(num_points + 1, dtype=np.uint32)
    track_offsets[1:] = np.cumsum(track_lengths)

    if num_points > 0:
        track_image_ids = np.concatenate([pt.image_ids for pt in points])
        track_point2D_idxs = np.concatenate([pt.point2D_idxs for pt in points])
        xyzs = np.stack([pt.xyz for pt in points])
        rgbs = np.stack([pt.rgb for pt in points])
    else:
        track_image_ids = np.empty(0, dtype=np.uint32)
        track_point2D_idxs = np.empty(0, dtype=np.uint32)
        xyzs = np.empty((0, 3), dtype=np.float64)
        rgbs = np.empty((0, 3), dtype=np.uint8)

    return Point3DArrays(
        xyzs=xyzs,
        rgbs=rgbs,
        errors=np.array([pt.error for pt in points], dtype=np.float64),
        track_offsets=track_offsets,
        track_image_ids=track_image_ids,
        track_point2D_idxs=track_point2D_idxs,
        ids=np.array([pt.id for pt in points], dtype=np.uint64),
    )


def build_points3D_map(arrays: Point3DArrays) -> Dict[int, Point3D]:
    """Build Point3D values from CSR arrays. This copies all data."""
    points3D: Dict[int, Point3D] = {}
    offsets = arrays.track_offsets
    for i in range(arrays.num_points):
        start, end = int(offsets[i]), int(offsets[i + 1])
        point3D_id = int(arrays.ids[i])
        points3D[point3D_id] = Point3D(
            point3D_id,
            arrays.xyzs[i],
            arrays.rgbs[i],
            float(arrays.errors[i]),
            arrays.track_image_ids[start:end],
            arrays.track_point2D_idxs[start:end],
        )
    return points3D
