import os
import math
import logging
import numpy as np
from typing import Dict, List, Mapping, Optional, Sequence

from ..camera import Camera
from ..image import Image
from ..point3d import Point3D
from ..rig import Rig, RigPose, RigSensor, SensorId, Frame, FrameDataMapping
from ..types import (
    CAMERA_MODEL_NAMES,
    SensorType,
    from_binary_point3D_id,
    to_text_point3D_id,
)

logger = logging.getLogger(__name__)

# Significant digits used for floating point values (COLMAP writes with precision 17)
FLOAT_PRECISION = 17

TEXT_FILES = {
    "cameras": "cameras.txt",
    "images": "images.txt",
    "points3D": "points3D.txt",
    "rigs": "rigs.txt",
    "frames": "frames.txt",
}

# Minimum number of whitespace separated fields of a record line
MIN_CAMERA_FIELDS = 4
MIN_IMAGE_FIELDS = 10
MIN_POINT3D_FIELDS = 8
MIN_RIG_FIELDS = 4
MIN_RIG_SENSOR_FIELDS = 3
MIN_FRAME_FIELDS = 10


def format_double(value: float) -> str:
    """Format a float with 17 significant digits, trailing zeros removed.

    Values whose decimal exponent lies in [-6, 17) are written in fixed
    notation, everything else in exponential notation.
    """
    value = float(value)
    if not math.isfinite(value):
        return str(value)

    mantissa, exponent = f"{value:.{FLOAT_PRECISION - 1}e}".split("e")
    exponent = int(exponent)
    if -6 <= exponent < FLOAT_PRECISION:
        text = f"{value:.{max(FLOAT_PRECISION - 1 - exponent, 0)}f}"
        if "." in text:
            text = text.rstrip("0").rstrip(".")
        return text

    mantissa = mantissa.rstrip("0").rstrip(".")
    return f"{mantissa}e{exponent:+d}"


def _format_mean(total: int, count: int) -> str:
    return f"{total / count:.6f}" if count > 0 else "0"


def _is_data_line(line: str) -> bool:
    return bool(line) and not line.startswith("#")


def _parse_sensor_type(token: str) -> SensorType:
    """Sensor types are written as integers; enum names are accepted as well."""
    if token in SensorType.__members__:
        return SensorType[token]
    return SensorType(int(token))


def _join_lines(lines: List[str]) -> str:
    return "\n".join(lines) + "\n"


# ---------------------------------------------------------------------------
# Cameras
# ---------------------------------------------------------------------------

def parse_cameras_text(text: str) -> Dict[int, Camera]:
    """Parse the content of a cameras.txt file.

    Lines that are blank, comments, too short or malformed are skipped. Cameras
    with an unknown model name are skipped with a warning.
    """
    cameras: Dict[int, Camera] = {}

    for line_number, raw_line in enumerate(text.splitlines(), start=1):
        line = raw_line.strip()
        if not _is_data_line(line):
            continue

        elems = line.split()
        if len(elems) < MIN_CAMERA_FIELDS:
            logger.debug("cameras.txt line %d: expected at least %d fields, skipping",
                         line_number, MIN_CAMERA_FIELDS)
            continue

        model_name = elems[1]
        if model_name not in CAMERA_MODEL_NAMES:
            logger.warning("cameras.txt line %d: unknown camera model '%s', skipping",
                           line_number, model_name)
            continue

        try:
            camera_id = int(elems[0])
            cameras[camera_id] = Camera(camera_id, model_name, int(elems[2]), int(elems[3]),
                                        [float(p) for p in elems[4:]])
        except ValueError as e:
            logger.debug("cameras.txt line %d: %s, skipping", line_number, e)

    return cameras


def write_cameras_text(cameras: Mapping[int, Camera]) -> str:
    """Serialize cameras to the cameras.txt format, sorted by camera id."""
    lines = [
        "# Camera list with one line of data per camera:",
        "#   CAMERA_ID, MODEL, WIDTH, HEIGHT, PARAMS[]",
        f"# Number of cameras: {len(cameras)}",
    ]

    for camera in sorted(cameras.values(), key=lambda cam: cam.id):
        params_str = " ".join(format_double(p) for p in camera.params)
        lines.append(f"{camera.id} {camera.model} {camera.width} {camera.height} {params_str}")

    return _join_lines(lines)


# ---------------------------------------------------------------------------
# Images
# ---------------------------------------------------------------------------

def _parse_points2D_line(line: str):
    elems = line.split()
    num_points = len(elems) // 3
    xys = np.empty((num_points, 2), dtype=np.float64)
    point3D_ids = np.empty(num_points, dtype=np.int64)
    for j in range(num_points):
        xys[j, 0] = float(elems[3 * j])
        xys[j, 1] = float(elems[3 * j + 1])
        point3D_ids[j] = from_binary_point3D_id(int(elems[3 * j + 2]))
    return xys, point3D_ids


def parse_images_text(text: str) -> Dict[int, Image]:
    """Parse the content of an images.txt file.

    Each image spans two lines: the pose header and the line of
    (X, Y, POINT3D_ID) triplets, which may be empty. Both `-1` and the
    unsigned 64-bit maximum read back as INVALID_POINT3D_ID.
    """
    images: Dict[int, Image] = {}
    lines = text.splitlines()

    i = 0
    while i < len(lines):
        line = lines[i].strip()
        line_number = i + 1
        i += 1

        if not _is_data_line(line):
            continue

        elems = line.split()
        # The line after the header always belongs to this image, even when the header is skipped
        if len(elems) < MIN_IMAGE_FIELDS:
            logger.debug("images.txt line %d: expected at least %d fields, skipping",
                         line_number, MIN_IMAGE_FIELDS)
            i += 1
            continue

        points_line = ""
        if i < len(lines):
            next_line = lines[i].strip()
            if not next_line.startswith("#"):
                points_line = next_line
            i += 1

        try:
            image_id = int(elems[0])
            qvec = [float(v) for v in elems[1:5]]
            tvec = [float(v) for v in elems[5:8]]
            camera_id = int(elems[8])
            xys, point3D_ids = _parse_points2D_line(points_line)
            images[image_id] = Image(image_id, elems[9], camera_id, qvec, tvec,
                                     xys=xys, point3D_ids=point3D_ids)
        except (ValueError, OverflowError) as e:
            logger.debug("images.txt line %d: %s, skipping", line_number, e)

    return images


def write_images_text(images: Mapping[int, Image]) -> str:
    """Serialize images to the images.txt format, sorted by image id.

    Raises:
        ValueError: If an image was loaded without its 2D points.
    """
    total_observations = sum(image.num_valid_observations() for image in images.values())
    lines = [
        "# Image list with two lines of data per image:",
        "#   IMAGE_ID, QW, QX, QY, QZ, TX, TY, TZ, CAMERA_ID, NAME",
        "#   POINTS2D[] as (X, Y, POINT3D_ID)",
        f"# Number of images: {len(images)}, mean observations per image: "
        f"{_format_mean(total_observations, len(images))}",
    ]

    for image in sorted(images.values(), key=lambda img: img.id):
        if not image.has_points2D and image.num_points2D > 0:
            raise ValueError(f"Image {image.id} was loaded without its 2D points and cannot be written")

        pose_str = " ".join(format_double(v) for v in (*image.qvec, *image.tvec))
        lines.append(f"{image.id} {pose_str} {image.camera_id} {image.name}")

        if image.has_points2D:
            lines.append(" ".join(
                f"{format_double(xy[0])} {format_double(xy[1])} {to_text_point3D_id(p3d_id)}"
                for xy, p3d_id in zip(image.xys, image.point3D_ids.tolist())
            ))
        else:
            lines.append("")

    return _join_lines(lines)


# ---------------------------------------------------------------------------
# Points3D
# ---------------------------------------------------------------------------

def parse_points3D_text(text: str) -> Dict[int, Point3D]:
    """Parse the content of a points3D.txt file."""
    points3D: Dict[int, Point3D] = {}

    for line_number, raw_line in enumerate(text.splitlines(), start=1):
        line = raw_line.strip()
        if not _is_data_line(line):
            continue

        elems = line.split()
        if len(elems) < MIN_POINT3D_FIELDS:
            logger.debug("points3D.txt line %d: expected at least %d fields, skipping",
                         line_number, MIN_POINT3D_FIELDS)
            continue

        try:
            point3D_id = int(elems[0])
            xyz = [float(v) for v in elems[1:4]]
            rgb = [int(v) for v in elems[4:7]]
            if any(c < 0 or c > 255 for c in rgb):
                raise ValueError(f"color {rgb} out of range")
            error = float(elems[7])
            track = [int(v) for v in elems[8:8 + 2 * ((len(elems) - 8) // 2)]]
            points3D[point3D_id] = Point3D(point3D_id, xyz, rgb, error, track[0::2], track[1::2])
        except (ValueError, OverflowError) as e:
            logger.debug("points3D.txt line %d: %s, skipping", line_number, e)

    return points3D


def write_points3D_text(points3D: Mapping[int, Point3D]) -> str:
    """Serialize points to the points3D.txt format, sorted by point id."""
    total_track_length = sum(point.get_track_length() for point in points3D.values())
    lines = [
        "# 3D point list with one line of data per point:",
        "#   POINT3D_ID, X, Y, Z, R, G, B, ERROR, TRACK[] as (IMAGE_ID, POINT2D_IDX)",
        f"# Number of points: {len(points3D)}, mean track length: "
        f"{_format_mean(total_track_length, len(points3D))}",
    ]

    for point in sorted(points3D.values(), key=lambda pt: pt.id):
        xyz_str = " ".join(format_double(v) for v in point.xyz)
        rgb_str = " ".join(str(c) for c in point.rgb.tolist())
        track_str = " ".join(f"{img_id} {p2d_idx}" for img_id, p2d_idx in point.get_track())
        lines.append(f"{point.id} {xyz_str} {rgb_str} {format_double(point.error)} {track_str}")

    return _join_lines(lines)


# ---------------------------------------------------------------------------
# Rigs
# ---------------------------------------------------------------------------

def _parse_rig_sensor(elems: Sequence[str], line_number: int) -> RigSensor:
    sensor_id = SensorId(_parse_sensor_type(elems[0]), int(elems[1]))
    has_pose = int(elems[2]) != 0
    pose = None
    if has_pose:
        if len(elems) >= 10:
            pose = RigPose.from_values([float(v) for v in elems[3:10]])
        else:
            logger.debug("rigs.txt line %d: sensor pose flagged but missing, ignoring pose", line_number)
    return RigSensor(sensor_id, pose)


def parse_rigs_text(text: str) -> Dict[int, Rig]:
    """Parse the content of a rigs.txt file.

    Each rig is a header line (RIG_ID NUM_SENSORS REF_SENSOR_TYPE REF_SENSOR_ID)
    followed by one line per non-reference sensor
    (SENSOR_TYPE SENSOR_ID HAS_POSE [QW QX QY QZ TX TY TZ]).
    """
    rigs: Dict[int, Rig] = {}
    lines = text.splitlines()

    i = 0
    while i < len(lines):
        line = lines[i].strip()
        line_number = i + 1
        i += 1

        if not _is_data_line(line):
            continue

        elems = line.split()
        if len(elems) < MIN_RIG_FIELDS:
            logger.debug("rigs.txt line %d: expected at least %d fields, skipping",
                         line_number, MIN_RIG_FIELDS)
            continue

        try:
            rig_id = int(elems[0])
            num_sensors = int(elems[1])
            ref_sensor_id = None
            if num_sensors > 0:
                ref_sensor_id = SensorId(_parse_sensor_type(elems[2]), int(elems[3]))
        except ValueError as e:
            logger.debug("rigs.txt line %d: %s, skipping", line_number, e)
            continue

        sensors = []
        remaining = max(num_sensors - 1, 0)
        while remaining > 0 and i < len(lines):
            sensor_line = lines[i].strip()
            sensor_line_number = i + 1
            i += 1
            if not _is_data_line(sensor_line):
                continue
            remaining -= 1

            sensor_elems = sensor_line.split()
            if len(sensor_elems) < MIN_RIG_SENSOR_FIELDS:
                logger.debug("rigs.txt line %d: expected at least %d fields, skipping sensor",
                             sensor_line_number, MIN_RIG_SENSOR_FIELDS)
                continue
            try:
                sensors.append(_parse_rig_sensor(sensor_elems, sensor_line_number))
            except ValueError as e:
                logger.debug("rigs.txt line %d: %s, skipping sensor", sensor_line_number, e)

        rigs[rig_id] = Rig(rig_id, ref_sensor_id, sensors)

    return rigs


def write_rigs_text(rigs: Mapping[int, Rig]) -> str:
    """Serialize rigs to the rigs.txt format, sorted by rig id."""
    lines = [
        "# Rig list with one line per rig followed by one line per additional sensor:",
        "#   RIG_ID, NUM_SENSORS, REF_SENSOR_TYPE, REF_SENSOR_ID",
        "#   SENSOR_TYPE, SENSOR_ID, HAS_POSE[, QW, QX, QY, QZ, TX, TY, TZ]",
        f"# Number of rigs: {len(rigs)}",
    ]

    for rig in sorted(rigs.values(), key=lambda r: r.id):
        ref = rig.ref_sensor_id
        if ref is None:
            lines.append(f"{rig.id} 0 {SensorType.INVALID.value} 0")
            continue
        lines.append(f"{rig.id} {rig.num_sensors()} {ref.type.value} {ref.id}")
        for sensor in rig.sensors:
            fields = [str(sensor.sensor_id.type.value), str(sensor.sensor_id.id),
                      "1" if sensor.has_pose else "0"]
            if sensor.has_pose:
                fields.extend(format_double(v) for v in sensor.pose.to_values())
            lines.append(" ".join(fields))

    return _join_lines(lines)


# ---------------------------------------------------------------------------
# Frames
# ---------------------------------------------------------------------------

def parse_frames_text(text: str) -> Dict[int, Frame]:
    """Parse the content of a frames.txt file.

    Each frame is a header line (FRAME_ID RIG_ID QW QX QY QZ TX TY TZ
    NUM_DATA_IDS) followed by NUM_DATA_IDS (SENSOR_TYPE SENSOR_ID DATA_ID)
    groups. The groups may share one line or be spread over several lines.
    """
    frames: Dict[int, Frame] = {}
    lines = text.splitlines()

    i = 0
    while i < len(lines):
        line = lines[i].strip()
        line_number = i + 1
        i += 1

        if not _is_data_line(line):
            continue

        elems = line.split()
        if len(elems) < MIN_FRAME_FIELDS:
            logger.debug("frames.txt line %d: expected at least %d fields, skipping",
                         line_number, MIN_FRAME_FIELDS)
            continue

        try:
            frame_id = int(elems[0])
            rig_id = int(elems[1])
            rig_from_world = RigPose.from_values([float(v) for v in elems[2:9]])
            num_data_ids = int(elems[9])
        except ValueError as e:
            logger.debug("frames.txt line %d: %s, skipping", line_number, e)
            continue

        # Payload lines hold whole groups of three tokens; a header line never does
        tokens: List[str] = []
        while len(tokens) < 3 * num_data_ids and i < len(lines):
            payload_line = lines[i].strip()
            if not _is_data_line(payload_line):
                i += 1
                continue
            payload = payload_line.split()
            if len(payload) % 3 != 0:
                break
            tokens.extend(payload)
            i += 1

        data_ids = []
        for j in range(min(len(tokens) // 3, num_data_ids)):
            try:
                sensor_id = SensorId(_parse_sensor_type(tokens[3 * j]), int(tokens[3 * j + 1]))
                data_ids.append(FrameDataMapping(sensor_id, int(tokens[3 * j + 2])))
            except ValueError as e:
                logger.debug("frames.txt frame %d: %s, skipping data id", frame_id, e)
        if len(data_ids) < num_data_ids:
            logger.debug("frames.txt line %d: frame %d declares %d data ids, found %d",
                         line_number, frame_id, num_data_ids, len(data_ids))

        frames[frame_id] = Frame(frame_id, rig_id, rig_from_world, data_ids)

    return frames


def write_frames_text(frames: Mapping[int, Frame]) -> str:
    """Serialize frames to the frames.txt format, sorted by frame id."""
    lines = [
        "# Frame list with two lines of data per frame:",
        "#   FRAME_ID, RIG_ID, QW, QX, QY, QZ, TX, TY, TZ, NUM_DATA_IDS",
        "#   DATA_IDS[] as (SENSOR_TYPE, SENSOR_ID, DATA_ID)",
        f"# Number of frames: {len(frames)}",
    ]

    for frame in sorted(frames.values(), key=lambda f: f.id):
        pose_str = " ".join(format_double(v) for v in frame.rig_from_world.to_values())
        lines.append(f"{frame.id} {frame.rig_id} {pose_str} {len(frame.data_ids)}")
        lines.append(" ".join(
            f"{mapping.sensor_id.type.value} {mapping.sensor_id.id} {mapping.data_id}"
            for mapping in frame.data_ids
        ))

    return _join_lines(lines)


# ---------------------------------------------------------------------------
# PLY export
# ---------------------------------------------------------------------------

def write_points_ply(points3D: Mapping[int, Point3D]) -> str:
    """Export points as an ASCII PLY point cloud (xyz + rgb), sorted by point id."""
    lines = [
        "ply",
        "format ascii 1.0",
        f"element vertex {len(points3D)}",
        "property float x",
        "property float y",
        "property float z",
        "property uchar red",
        "property uchar green",
        "property uchar blue",
        "end_header",
    ]
    for point in sorted(points3D.values(), key=lambda pt: pt.id):
        x, y, z = (format_double(v) for v in point.xyz)
        r, g, b = point.rgb.tolist()
        lines.append(f"{x} {y} {z} {r} {g} {b}")

    return _join_lines(lines)


# ---------------------------------------------------------------------------
# Files
# ---------------------------------------------------------------------------

def _read_file(path: str) -> str:
    with open(path, "r", encoding="utf-8") as fid:
        return fid.read()


def _write_file(path: str, content: str) -> None:
    with open(path, "w", encoding="utf-8", newline="\n") as fid:
        fid.write(content)


def read_cameras_text(path: str) -> Dict[int, Camera]:
    return parse_cameras_text(_read_file(path))


def read_images_text(path: str, lite: bool = False) -> Dict[int, Image]:
    """Read images.txt. In lite mode only the observation counts are kept."""
    images = parse_images_text(_read_file(path))
    if lite:
        images = {image_id: Image(image.id, image.name, image.camera_id, image.qvec, image.tvec,
                                  num_points2D=image.num_points2D)
                  for image_id, image in images.items()}
    return images


def read_points3D_text(path: str) -> Dict[int, Point3D]:
    return parse_points3D_text(_read_file(path))


def read_rigs_text(path: str) -> Dict[int, Rig]:
    return parse_rigs_text(_read_file(path))


def read_frames_text(path: str) -> Dict[int, Frame]:
    return parse_frames_text(_read_file(path))


def read_text_model(path: str, lite: bool = False) -> Dict[str, Optional[dict]]:
    """Read a COLMAP text model from a directory.

    Args:
        path: Directory containing the text model files.
        lite: If True, images keep only their observation counts.

    Returns:
        Dict with 'cameras', 'images', 'points3D', 'rigs' and 'frames' maps.
        'rigs' and 'frames' are None when their files are absent.
    """
    model: Dict[str, Optional[dict]] = {
        "cameras": read_cameras_text(os.path.join(path, TEXT_FILES["cameras"])),
        "images": read_images_text(os.path.join(path, TEXT_FILES["images"]), lite=lite),
        "points3D": read_points3D_text(os.path.join(path, TEXT_FILES["points3D"])),
        "rigs": None,
        "frames": None,
    }

    rigs_path = os.path.join(path, TEXT_FILES["rigs"])
    frames_path = os.path.join(path, TEXT_FILES["frames"])
    if os.path.isfile(rigs_path):
        model["rigs"] = read_rigs_text(rigs_path)
    if os.path.isfile(frames_path):
        model["frames"] = read_frames_text(frames_path)

    logger.debug("Read text model from %s: %d cameras, %d images, %d points3D",
                 path, len(model["cameras"]), len(model["images"]), len(model["points3D"]))
    return model


def write_text_model(cameras: Mapping[int, Camera], images: Mapping[int, Image],
                     points3D: Mapping[int, Point3D], path: str,
                     rigs: Optional[Mapping[int, Rig]] = None,
                     frames: Optional[Mapping[int, Frame]] = None) -> None:
    """Write a COLMAP text model into `path`. Rigs and frames are written only when given."""
    os.makedirs(path, exist_ok=True)

    _write_file(os.path.join(path, TEXT_FILES["cameras"]), write_cameras_text(cameras))
    _write_file(os.path.join(path, TEXT_FILES["images"]), write_images_text(images))
    _write_file(os.path.join(path, TEXT_FILES["points3D"]), write_points3D_text(points3D))
    if rigs is not None:
        _write_file(os.path.join(path, TEXT_FILES["rigs"]), write_rigs_text(rigs))
    if frames is not None:
        _write_file(os.path.join(path, TEXT_FILES["frames"]), write_frames_text(frames))
