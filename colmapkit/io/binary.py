import os
import logging
import numpy as np
from typing import Dict, Mapping, Optional, Union

from .stream import BinaryReader, BinaryWriter, BufferLike
from ..camera import Camera
from ..image import Image
from ..point3d import Point3D
from ..rig import Rig, RigPose, RigSensor, SensorId, Frame, FrameDataMapping
from ..types import CAMERA_MODEL_IDS

logger = logging.getLogger(__name__)

# x (f64), y (f64), point3D_id (u64) per observation
POINT2D_RECORD_SIZE = 24

_POINT2D_DTYPE = np.dtype([("x", "<f8"), ("y", "<f8"), ("point3D_id", "<i8")])
_TRACK_DTYPE = np.dtype([("image_id", "<u4"), ("point2D_idx", "<u4")])

BINARY_FILES = {
    "cameras": "cameras.bin",
    "images": "images.bin",
    "points3D": "points3D.bin",
    "rigs": "rigs.bin",
    "frames": "frames.bin",
}


def _read_records(reader: BinaryReader, count: int, dtype: np.dtype) -> np.ndarray:
    """Read `count` fixed-size records into a structured array."""
    if count == 0:
        return np.empty(0, dtype=dtype)
    return np.frombuffer(reader.read_bytes(count * dtype.itemsize), dtype=dtype)


def _read_pose(reader: BinaryReader) -> RigPose:
    return RigPose.from_values(reader.read_float64_array(7))


# ---------------------------------------------------------------------------
# Cameras
# ---------------------------------------------------------------------------

def parse_cameras_binary(buffer: BufferLike) -> Dict[int, Camera]:
    """Parse the content of a cameras.bin file.

    Raises:
        EOFError: If the buffer is truncated.
        ValueError: If a camera uses an unknown model id; the record length
                    cannot be known in that case.
    """
    reader = BinaryReader(buffer)
    cameras: Dict[int, Camera] = {}

    num_cameras = reader.read_uint64()
    for _ in range(num_cameras):
        camera_id, model_id, width, height = reader.read_struct("IiQQ")
        if model_id not in CAMERA_MODEL_IDS:
            raise ValueError(f"Unknown camera model id {model_id} for camera {camera_id}")
        num_params = CAMERA_MODEL_IDS[model_id].num_params
        params = reader.read_float64_array(num_params)
        cameras[camera_id] = Camera(camera_id, model_id, width, height, params)

    return cameras


def write_cameras_binary(cameras: Mapping[int, Camera]) -> bytes:
    """Serialize cameras to the cameras.bin layout, sorted by camera id."""
    writer = BinaryWriter()
    writer.write_uint64(len(cameras))

    for camera in sorted(cameras.values(), key=lambda cam: cam.id):
        writer.write_struct("IiQQ", camera.id, camera.model_id, camera.width, camera.height)
        writer.write_float64_array(camera.params)

    return writer.to_bytes()


# ---------------------------------------------------------------------------
# Images
# ---------------------------------------------------------------------------

def parse_images_binary(buffer: BufferLike, skip_points2D: bool = False) -> Dict[int, Image]:
    """Parse the content of an images.bin file.

    Args:
        buffer: Raw file content.
        skip_points2D: If True, the 2D observations are skipped and only their
                       count is kept (lite images).

    Raises:
        EOFError: If the buffer is truncated.
    """
    reader = BinaryReader(buffer)
    images: Dict[int, Image] = {}

    num_images = reader.read_uint64()
    for _ in range(num_images):
        image_id = reader.read_uint32()
        qvec = reader.read_float64_array(4)
        tvec = reader.read_float64_array(3)
        camera_id = reader.read_uint32()
        name = reader.read_string()
        num_points2D = reader.read_uint64()

        if skip_points2D:
            reader.skip(num_points2D * POINT2D_RECORD_SIZE)
            images[image_id] = Image(image_id, name, camera_id, qvec, tvec,
                                     num_points2D=num_points2D)
            continue

        # The unsigned sentinel reads back as -1 through the signed view
        points = _read_records(reader, num_points2D, _POINT2D_DTYPE)
        xys = np.column_stack((points["x"], points["y"]))
        images[image_id] = Image(image_id, name, camera_id, qvec, tvec,
                                 xys=xys, point3D_ids=points["point3D_id"])

    return images


def parse_images_binary_lite(buffer: BufferLike) -> Dict[int, Image]:
    """Parse images.bin keeping only the observation count of each image."""
    return parse_images_binary(buffer, skip_points2D=True)


def write_images_binary(images: Mapping[int, Image]) -> bytes:
    """Serialize images to the images.bin layout, sorted by image id.

    Raises:
        ValueError: If an image was loaded without its 2D points.
    """
    writer = BinaryWriter()
    writer.write_uint64(len(images))

    for image in sorted(images.values(), key=lambda img: img.id):
        if not image.has_points2D and image.num_points2D > 0:
            raise ValueError(f"Image {image.id} was loaded without its 2D points and cannot be written")

        writer.write_uint32(image.id)
        writer.write_float64_array(image.qvec)
        writer.write_float64_array(image.tvec)
        writer.write_uint32(image.camera_id)
        writer.write_string(image.name)
        writer.write_uint64(image.num_points2D)

        if image.num_points2D > 0:
            points = np.empty(image.num_points2D, dtype=_POINT2D_DTYPE)
            points["x"] = image.xys[:, 0]
            points["y"] = image.xys[:, 1]
            # -1 is stored as the unsigned maximum (same bit pattern)
            points["point3D_id"] = image.point3D_ids
            writer.write_bytes(points.tobytes())

    return writer.to_bytes()


# ---------------------------------------------------------------------------
# Points3D
# ---------------------------------------------------------------------------

def parse_points3D_binary(buffer: BufferLike) -> Dict[int, Point3D]:
    """Parse the content of a points3D.bin file.

    Raises:
        EOFError: If the buffer is truncated.
    """
    reader = BinaryReader(buffer)
    points3D: Dict[int, Point3D] = {}

    num_points = reader.read_uint64()
    for _ in range(num_points):
        point3D_id, x, y, z, r, g, b, error, track_length = reader.read_struct("QdddBBBdQ")
        track = _read_records(reader, track_length, _TRACK_DTYPE)
        points3D[point3D_id] = Point3D(point3D_id, (x, y, z), (r, g, b), error,
                                       track["image_id"], track["point2D_idx"])

    return points3D


def write_points3D_binary(points3D: Mapping[int, Point3D]) -> bytes:
    """Serialize points to the points3D.bin layout, sorted by point id."""
    writer = BinaryWriter()
    writer.write_uint64(len(points3D))

    for point in sorted(points3D.values(), key=lambda pt: pt.id):
        track_length = point.get_track_length()
        writer.write_uint64(point.id)
        writer.write_struct("dddBBBd", *point.xyz.tolist(), *point.rgb.tolist(), point.error)
        writer.write_uint64(track_length)
        if track_length > 0:
            track = np.empty(track_length, dtype=_TRACK_DTYPE)
            track["image_id"] = point.image_ids
            track["point2D_idx"] = point.point2D_idxs
            writer.write_bytes(track.tobytes())

    return writer.to_bytes()


# ---------------------------------------------------------------------------
# Rigs and frames
# ---------------------------------------------------------------------------

def parse_rigs_binary(buffer: BufferLike) -> Dict[int, Rig]:
    """Parse the content of a rigs.bin file.

    The reference sensor is stored without a pose (identity by definition).
    """
    reader = BinaryReader(buffer)
    rigs: Dict[int, Rig] = {}

    num_rigs = reader.read_uint64()
    for _ in range(num_rigs):
        rig_id, num_sensors = reader.read_struct("II")
        ref_sensor_id = None
        sensors = []

        if num_sensors > 0:
            ref_type, ref_id = reader.read_struct("iI")
            ref_sensor_id = SensorId(ref_type, ref_id)
            for _ in range(num_sensors - 1):
                sensor_type, sensor_id, has_pose = reader.read_struct("iIB")
                pose = _read_pose(reader) if has_pose else None
                sensors.append(RigSensor(SensorId(sensor_type, sensor_id), pose))

        rigs[rig_id] = Rig(rig_id, ref_sensor_id, sensors)

    return rigs


def write_rigs_binary(rigs: Mapping[int, Rig]) -> bytes:
    """Serialize rigs to the rigs.bin layout, sorted by rig id."""
    writer = BinaryWriter()
    writer.write_uint64(len(rigs))

    for rig in sorted(rigs.values(), key=lambda r: r.id):
        writer.write_struct("II", rig.id, rig.num_sensors())
        if rig.ref_sensor_id is None:
            continue
        writer.write_struct("iI", rig.ref_sensor_id.type.value, rig.ref_sensor_id.id)
        for sensor in rig.sensors:
            writer.write_struct("iIB", sensor.sensor_id.type.value, sensor.sensor_id.id,
                                1 if sensor.has_pose else 0)
            if sensor.has_pose:
                writer.write_float64_array(sensor.pose.to_values())

    return writer.to_bytes()


def parse_frames_binary(buffer: BufferLike) -> Dict[int, Frame]:
    """Parse the content of a frames.bin file."""
    reader = BinaryReader(buffer)
    frames: Dict[int, Frame] = {}

    num_frames = reader.read_uint64()
    for _ in range(num_frames):
        frame_id, rig_id = reader.read_struct("II")
        rig_from_world = _read_pose(reader)
        num_data_ids = reader.read_uint32()
        data_ids = []
        for _ in range(num_data_ids):
            sensor_type, sensor_id, data_id = reader.read_struct("iIQ")
            data_ids.append(FrameDataMapping(SensorId(sensor_type, sensor_id), data_id))
        frames[frame_id] = Frame(frame_id, rig_id, rig_from_world, data_ids)

    return frames


def write_frames_binary(frames: Mapping[int, Frame]) -> bytes:
    """Serialize frames to the frames.bin layout, sorted by frame id."""
    writer = BinaryWriter()
    writer.write_uint64(len(frames))

    for frame in sorted(frames.values(), key=lambda f: f.id):
        writer.write_struct("II", frame.id, frame.rig_id)
        writer.write_float64_array(frame.rig_from_world.to_values())
        writer.write_uint32(len(frame.data_ids))
        for mapping in frame.data_ids:
            writer.write_struct("iIQ", mapping.sensor_id.type.value, mapping.sensor_id.id,
                                mapping.data_id)

    return writer.to_bytes()


# ---------------------------------------------------------------------------
# Files
# ---------------------------------------------------------------------------

def _read_file(path: str) -> bytes:
    with open(path, "rb") as fid:
        return fid.read()


def _write_file(path: str, data: bytes) -> None:
    with open(path, "wb") as fid:
        fid.write(data)


def read_cameras_binary(path: str) -> Dict[int, Camera]:
    return parse_cameras_binary(_read_file(path))


def read_images_binary(path: str, lite: bool = False) -> Dict[int, Image]:
    return parse_images_binary(_read_file(path), skip_points2D=lite)


def read_points3D_binary(path: str) -> Dict[int, Point3D]:
    return parse_points3D_binary(_read_file(path))


def read_rigs_binary(path: str) -> Dict[int, Rig]:
    return parse_rigs_binary(_read_file(path))


def read_frames_binary(path: str) -> Dict[int, Frame]:
    return parse_frames_binary(_read_file(path))


def read_binary_model(path: str, lite: bool = False) -> Dict[str, Optional[dict]]:
    """Read a COLMAP binary model from a directory.

    Args:
        path: Directory containing the binary model files.
        lite: If True, images are read without their 2D observations.

    Returns:
        Dict with 'cameras', 'images', 'points3D', 'rigs' and 'frames' maps.
        'rigs' and 'frames' are None when their files are absent.
    """
    model: Dict[str, Optional[dict]] = {
        "cameras": read_cameras_binary(os.path.join(path, BINARY_FILES["cameras"])),
        "images": read_images_binary(os.path.join(path, BINARY_FILES["images"]), lite=lite),
        "points3D": read_points3D_binary(os.path.join(path, BINARY_FILES["points3D"])),
        "rigs": None,
        "frames": None,
    }

    rigs_path = os.path.join(path, BINARY_FILES["rigs"])
    frames_path = os.path.join(path, BINARY_FILES["frames"])
    if os.path.isfile(rigs_path):
        model["rigs"] = read_rigs_binary(rigs_path)
    if os.path.isfile(frames_path):
        model["frames"] = read_frames_binary(frames_path)

    logger.debug("Read binary model from %s: %d cameras, %d images, %d points3D",
                 path, len(model["cameras"]), len(model["images"]), len(model["points3D"]))
    return model


def write_binary_model(cameras: Mapping[int, Camera], images: Mapping[int, Image],
                       points3D: Mapping[int, Point3D], path: str,
                       rigs: Optional[Mapping[int, Rig]] = None,
                       frames: Optional[Mapping[int, Frame]] = None) -> None:
    """Writes a binary model into `path`. Rigs and frames are written only when given."""
    os.makedirs(path, exist_ok=True)

    _write_file(os.path.join(path, BINARY_FILES["cameras"]), write_cameras_binary(cameras))
    _write_file(os.path.join(path, BINARY_FILES["images"]), write_images_binary(images))
    _write_file(os.path.join(path, BINARY_FILES["points3D"]), write_points3D_binary(points3D))
    if rigs is not None:
        _write_file(os.path.join(path, BINARY_FILES["rigs"]), write_rigs_binary(rigs))
    if frames is not None:
        _write_file(os.path.join(path, BINARY_FILES["frames"]), write_frames_binary(frames))
