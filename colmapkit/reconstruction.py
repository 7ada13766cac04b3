import logging
import numpy as np
from typing import Dict, List, Mapping, Optional, Tuple, Union

from .image import Image
from .camera import Camera
from .point3d import Point3D
from .rig import Rig, Frame

from .io import read_model, write_model, Point3DArrays, points3D_to_arrays
from .conversion import ConversionResult, IncompatibleConversion, convert_camera_model, DEFAULT_THRESHOLD

from .utils import find_model_path
from .types import INVALID_POINT3D_ID, CameraModelType, SensorType, to_binary_point3D_id

logger = logging.getLogger(__name__)

# Number of integrity problems listed in the log before summarizing the rest
MAX_LOGGED_PROBLEMS = 10


class Reconstruction:
    """
    A COLMAP reconstruction: cameras, posed images, 3D points and optional
    rigs and frames, each held in a plain dict keyed by id.

    Reconstructions are treated as values: methods that change content return
    a new Reconstruction and leave this one untouched.

    Attributes:
        cameras (Dict[int, Camera]): Camera id -> Camera.
        images (Dict[int, Image]): Image id -> Image.
        points3D (Dict[int, Point3D]): Point3D id -> Point3D.
        rigs (Optional[Dict[int, Rig]]): Rig id -> Rig, None when the model has no rigs.
        frames (Optional[Dict[int, Frame]]): Frame id -> Frame, None when the model has no frames.
        path (Optional[str]): Directory the model was loaded from or last saved to.
    """

    cameras: Dict[int, Camera]
    images: Dict[int, Image]
    points3D: Dict[int, Point3D]
    rigs: Optional[Dict[int, Rig]]
    frames: Optional[Dict[int, Frame]]
    path: Optional[str]

    def __init__(self,
                 cameras: Optional[Mapping[int, Camera]] = None,
                 images: Optional[Mapping[int, Image]] = None,
                 points3D: Optional[Mapping[int, Point3D]] = None,
                 rigs: Optional[Mapping[int, Rig]] = None,
                 frames: Optional[Mapping[int, Frame]] = None,
                 path: Optional[str] = None) -> None:
        self.cameras = dict(cameras) if cameras is not None else {}
        self.images = dict(images) if images is not None else {}
        self.points3D = dict(points3D) if points3D is not None else {}
        self.rigs = dict(rigs) if rigs is not None else None
        self.frames = dict(frames) if frames is not None else None
        self.path = path

    @classmethod
    def load(cls, reconstruction_path: str, lite: bool = False, verify_integrity: bool = True,
             file_format: Optional[str] = None) -> 'Reconstruction':
        """
        Loads a COLMAP reconstruction from a specified path.

        Searches for the model files (cameras, images, points3D) in standard
        locations ('sparse/0', 'sparse', root) within the `reconstruction_path`.
        Automatically detects binary or text format.

        Args:
            reconstruction_path: The path to the COLMAP project directory
                                 (e.g., '/path/to/project').
            lite: If True, images keep only their observation counts.
            verify_integrity: If True, referential problems are logged as warnings.
            file_format: Optional explicit format ('.bin' or '.txt').

        Raises:
            FileNotFoundError: If no valid COLMAP model directory can be found
                               within the specified path.
            ValueError: If the model files are corrupt or truncated.
        """
        model_dir = find_model_path(reconstruction_path)
        if model_dir is None:
            raise FileNotFoundError(f"Could not find COLMAP model in standard locations within '{reconstruction_path}'")

        try:
            model = read_model(model_dir, file_format=file_format, lite=lite)
        except (EOFError, ValueError, UnicodeDecodeError) as e:
            raise ValueError(f"COLMAP model in '{model_dir}' is corrupt or truncated and cannot be loaded: {e}") from e

        reconstruction = cls(model["cameras"], model["images"], model["points3D"],
                             rigs=model["rigs"], frames=model["frames"], path=model_dir)
        logger.info("Loaded %s", reconstruction)

        if verify_integrity:
            problems = reconstruction.verify_integrity()
            if problems:
                logger.warning("Inconsistencies found in the loaded reconstruction:")
                for problem in problems[:MAX_LOGGED_PROBLEMS]:
                    logger.warning("  - %s", problem)
                if len(problems) > MAX_LOGGED_PROBLEMS:
                    logger.warning("  ... (%d more)", len(problems) - MAX_LOGGED_PROBLEMS)

        return reconstruction

    def save(self, output_path: Optional[str] = None, binary: bool = True) -> None:
        """
        Saves the reconstruction to disk.

        Args:
            output_path: The directory to save the model files into. If None,
                         saves back to the load path (`self.path`). The
                         directory is created if it doesn't exist.
            binary: If True, saves in binary format (.bin), otherwise in text
                    format (.txt).

        Raises:
            ValueError: If no output path is known, or an image was loaded
                        without its 2D points.
        """
        save_dir = output_path if output_path is not None else self.path
        if save_dir is None:
            raise ValueError("No output path given and the reconstruction was not loaded from disk.")

        write_model(self, save_dir, binary=binary)
        self.path = save_dir
        logger.info("Saved reconstruction to %s (%s)", save_dir, "binary" if binary else "text")

    def to_dict(self) -> Dict[str, Optional[dict]]:
        return {
            "cameras": self.cameras,
            "images": self.images,
            "points3D": self.points3D,
            "rigs": self.rigs,
            "frames": self.frames,
        }

    def _replace(self, **entities) -> 'Reconstruction':
        model = self.to_dict()
        model.update(entities)
        return Reconstruction(path=self.path, **model)

    # ------------------------------------------------------------------
    # Access
    # ------------------------------------------------------------------

    @property
    def num_cameras(self) -> int:
        return len(self.cameras)

    @property
    def num_images(self) -> int:
        return len(self.images)

    @property
    def num_points3D(self) -> int:
        return len(self.points3D)

    def get_image(self, image_id: Optional[int] = None, name: Optional[str] = None) -> Optional[Image]:
        """
        Retrieves an Image object by its filename or by id.
        """
        if image_id is None and name is None:
            raise ValueError("Must provide either image_id or name.")

        if image_id is not None:
            return self.images.get(image_id)
        return next((image for image in self.images.values() if image.name == name), None)

    def get_3d_points(self, points_ids: Optional[List[int]] = None, image_id: Optional[int] = None) -> List[Point3D]:
        """
        Retrieves the Point3D objects with the given IDs, or those observed by an image.
        """
        if points_ids is None and image_id is None:
            raise ValueError("Must provide either points_ids or image_id.")
        if points_ids is not None and image_id is not None:
            raise ValueError("Cannot provide both points_ids and image_id.")

        if image_id is not None:
            image = self.images.get(image_id)
            if image is None or not image.has_points2D:
                return []
            points_ids = [p3d_id for p3d_id, _ in image.get_valid_points3D()]

        keys = [to_binary_point3D_id(point_id) for point_id in points_ids if point_id != INVALID_POINT3D_ID]
        return [self.points3D[key] for key in keys if key in self.points3D]

    def get_point3D_arrays(self) -> Point3DArrays:
        """The 3D points as CSR arrays, sorted by id."""
        return points3D_to_arrays(self.points3D)

    # ------------------------------------------------------------------
    # Derived summaries
    # ------------------------------------------------------------------

    def num_observations(self) -> int:
        """Total number of 2D observations with a 3D point."""
        return sum(image.num_valid_observations() for image in self.images.values())

    def mean_observations_per_image(self) -> float:
        """Matched observations per image, as written to the images.txt header."""
        if not self.images:
            return 0.0
        return self.num_observations() / len(self.images)

    def mean_track_length(self) -> float:
        if not self.points3D:
            return 0.0
        return sum(point.get_track_length() for point in self.points3D.values()) / len(self.points3D)

    def mean_reprojection_error(self) -> float:
        """Mean error over points whose error is known (non-negative)."""
        errors = [point.error for point in self.points3D.values() if point.has_valid_error()]
        return float(np.mean(errors)) if errors else 0.0

    def get_statistics(self) -> Dict[str, float]:
        """Calculates basic statistics about the reconstruction."""
        num_points2D = sum(image.num_points2D for image in self.images.values())
        return {
            "num_cameras": float(self.num_cameras),
            "num_images": float(self.num_images),
            "num_points3D": float(self.num_points3D),
            "mean_track_length": self.mean_track_length(),
            "mean_observations_per_image": num_points2D / self.num_images if self.images else 0.0,
            "mean_valid_observations_per_image": self.mean_observations_per_image(),
            "mean_reprojection_error": self.mean_reprojection_error(),
        }

    # ------------------------------------------------------------------
    # Transformations
    # ------------------------------------------------------------------

    def with_camera(self, camera: Camera) -> 'Reconstruction':
        """Returns a new reconstruction with `camera` added or replacing the camera of the same id."""
        cameras = dict(self.cameras)
        cameras[camera.id] = camera
        return self._replace(cameras=cameras)

    def convert_camera(self, camera_id: int, target_model: Union[str, int, CameraModelType],
                       threshold: float = DEFAULT_THRESHOLD) -> Tuple[Optional['Reconstruction'], ConversionResult]:
        """
        Converts one camera to another model.

        Returns:
            (new reconstruction, conversion result). The reconstruction is None
            when the conversion is incompatible; the result then carries the reason.

        Raises:
            KeyError: If the camera does not exist.
            ValueError: If the target model is unknown.
        """
        camera = self.cameras[camera_id]
        result = convert_camera_model(camera, target_model, threshold=threshold)
        if isinstance(result, IncompatibleConversion):
            logger.info("Camera %d not converted: %s", camera_id, result.reason)
            return None, result

        converted = camera.replace(model=target_model, params=result.params)
        if result.warning:
            logger.info("Camera %d converted %s -> %s: %s", camera_id, camera.model, converted.model, result.warning)
        return self.with_camera(converted), result

    # ------------------------------------------------------------------
    # Integrity
    # ------------------------------------------------------------------

    def verify_integrity(self) -> List[str]:
        """
        Checks referential integrity. Problems are reported, never repaired.

        Returns:
            List of human-readable problems. Empty if none were found.
        """
        problems: List[str] = []

        for image in self.images.values():
            if image.camera_id not in self.cameras:
                problems.append(f"Image {image.id} references missing camera {image.camera_id}")
            if image.has_points2D:
                for p3d_id, _ in image.get_valid_points3D():
                    if to_binary_point3D_id(p3d_id) not in self.points3D:
                        problems.append(f"Image {image.id} observes missing Point3D {p3d_id}")
                        break

        for point in self.points3D.values():
            for img_id, p2d_idx in point.get_track():
                image = self.images.get(img_id)
                if image is None:
                    problems.append(f"Point3D {point.id} track references missing image {img_id}")
                elif p2d_idx >= image.num_points2D:
                    problems.append(f"Point3D {point.id} track references out-of-bounds point2D index "
                                    f"{p2d_idx} for image {img_id} (size {image.num_points2D})")
                elif image.has_points2D and \
                        to_binary_point3D_id(int(image.point3D_ids[p2d_idx])) != to_binary_point3D_id(point.id):
                    problems.append(f"Point3D {point.id} track inconsistency: image {img_id} feature "
                                    f"{p2d_idx} points to Point3D {int(image.point3D_ids[p2d_idx])}")

        for frame in (self.frames or {}).values():
            if self.rigs is not None and frame.rig_id not in self.rigs:
                problems.append(f"Frame {frame.id} references missing rig {frame.rig_id}")
            for mapping in frame.data_ids:
                if mapping.sensor_id.type == SensorType.CAMERA and mapping.data_id not in self.images:
                    problems.append(f"Frame {frame.id} references missing image {mapping.data_id}")

        return problems

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Reconstruction):
            return NotImplemented
        return self.to_dict() == other.to_dict()

    __hash__ = None

    def __str__(self) -> str:
        return (
            f"Reconstruction(path='{self.path}', "
            f"cameras={self.num_cameras}, images={self.num_images}, "
            f"points3D={self.num_points3D}, "
            f"mean_track_len={self.mean_track_length():.2f}, "
            f"mean_obs_per_image={self.mean_observations_per_image():.2f})"
        )

    def __repr__(self) -> str:
        return self.__str__()
