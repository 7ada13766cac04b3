from enum import Enum
from typing import Tuple, Union

# A special value representing an invalid point3D ID
INVALID_POINT3D_ID = -1

# COLMAP writes the invalid point3D ID as std::numeric_limits<uint64_t>::max()
COLMAP_INVALID_POINT3D_ID = 2**64 - 1

UINT64_MASK = 2**64 - 1


class CameraModelType(Enum):
    """Enumeration of camera model types supported by COLMAP."""
    SIMPLE_PINHOLE = 0
    PINHOLE = 1
    SIMPLE_RADIAL = 2
    RADIAL = 3
    OPENCV = 4
    OPENCV_FISHEYE = 5
    FULL_OPENCV = 6
    FOV = 7
    SIMPLE_RADIAL_FISHEYE = 8
    RADIAL_FISHEYE = 9
    THIN_PRISM_FISHEYE = 10
    RAD_TAN_THIN_PRISM_FISHEYE = 11


class SensorType(Enum):
    """Sensor kinds that can be mounted on a rig."""
    INVALID = -1
    CAMERA = 0
    IMU = 1


class CameraModel:
    """Camera model information."""

    model_id: int
    model_name: str
    num_params: int
    param_names: Tuple[str, ...]

    def __init__(self, model_id: int, model_name: str, param_names: Tuple[str, ...]):
        """Initialize a camera model.

        Args:
            model_id: Numeric ID of the camera model
            model_name: String name of the camera model
            param_names: Ordered names of the model parameters
        """
        self.model_id = model_id
        self.model_name = model_name
        self.param_names = tuple(param_names)
        self.num_params = len(self.param_names)

    def __repr__(self) -> str:
        return f"CameraModel({self.model_id}, '{self.model_name}', num_params={self.num_params})"


CAMERA_MODELS = [
    CameraModel(CameraModelType.SIMPLE_PINHOLE.value, "SIMPLE_PINHOLE",
                ("f", "cx", "cy")),
    CameraModel(CameraModelType.PINHOLE.value, "PINHOLE",
                ("fx", "fy", "cx", "cy")),
    CameraModel(CameraModelType.SIMPLE_RADIAL.value, "SIMPLE_RADIAL",
                ("f", "cx", "cy", "k")),
    CameraModel(CameraModelType.RADIAL.value, "RADIAL",
                ("f", "cx", "cy", "k1", "k2")),
    CameraModel(CameraModelType.OPENCV.value, "OPENCV",
                ("fx", "fy", "cx", "cy", "k1", "k2", "p1", "p2")),
    CameraModel(CameraModelType.OPENCV_FISHEYE.value, "OPENCV_FISHEYE",
                ("fx", "fy", "cx", "cy", "k1", "k2", "k3", "k4")),
    CameraModel(CameraModelType.FULL_OPENCV.value, "FULL_OPENCV",
                ("fx", "fy", "cx", "cy", "k1", "k2", "p1", "p2", "k3", "k4", "k5", "k6")),
    CameraModel(CameraModelType.FOV.value, "FOV",
                ("fx", "fy", "cx", "cy", "omega")),
    CameraModel(CameraModelType.SIMPLE_RADIAL_FISHEYE.value, "SIMPLE_RADIAL_FISHEYE",
                ("f", "cx", "cy", "k")),
    CameraModel(CameraModelType.RADIAL_FISHEYE.value, "RADIAL_FISHEYE",
                ("f", "cx", "cy", "k1", "k2")),
    CameraModel(CameraModelType.THIN_PRISM_FISHEYE.value, "THIN_PRISM_FISHEYE",
                ("fx", "fy", "cx", "cy", "k1", "k2", "p1", "p2", "k3", "k4", "sx1", "sy1")),
    CameraModel(CameraModelType.RAD_TAN_THIN_PRISM_FISHEYE.value, "RAD_TAN_THIN_PRISM_FISHEYE",
                ("fx", "fy", "cx", "cy", "k1", "k2", "k3", "k4", "k5", "k6",
                 "p1", "p2", "sx1", "sy1", "sx2", "sy2")),
]

MAX_CAMERA_PARAMS = max(model.num_params for model in CAMERA_MODELS)
CAMERA_MODEL_IDS = {model.model_id: model for model in CAMERA_MODELS}
CAMERA_MODEL_NAMES = {model.model_name: model for model in CAMERA_MODELS}

PERSPECTIVE_MODELS = frozenset([
    CameraModelType.SIMPLE_PINHOLE,
    CameraModelType.PINHOLE,
    CameraModelType.SIMPLE_RADIAL,
    CameraModelType.RADIAL,
    CameraModelType.OPENCV,
    CameraModelType.FULL_OPENCV,
    CameraModelType.FOV,
])

FISHEYE_MODELS = frozenset([
    CameraModelType.SIMPLE_RADIAL_FISHEYE,
    CameraModelType.RADIAL_FISHEYE,
    CameraModelType.OPENCV_FISHEYE,
    CameraModelType.THIN_PRISM_FISHEYE,
])

# Models that can be converted into but never out of (rational / 16 parameter formulas)
SINK_MODELS = frozenset([
    CameraModelType.FULL_OPENCV,
    CameraModelType.RAD_TAN_THIN_PRISM_FISHEYE,
])


def resolve_model(model: Union[str, int, CameraModelType, CameraModel]) -> CameraModel:
    """Look up a camera model by name, numeric id or enum member.

    Raises:
        ValueError: If the model is unknown.
    """
    if isinstance(model, CameraModel):
        return model
    if isinstance(model, CameraModelType):
        return CAMERA_MODEL_IDS[model.value]
    if isinstance(model, str):
        if model not in CAMERA_MODEL_NAMES:
            raise ValueError(f"Unknown camera model name: {model}")
        return CAMERA_MODEL_NAMES[model]
    model_id = int(model)
    if model_id not in CAMERA_MODEL_IDS:
        raise ValueError(f"Unknown camera model id: {model_id}")
    return CAMERA_MODEL_IDS[model_id]


def to_binary_point3D_id(point3D_id: int) -> int:
    """Internal point3D id -> unsigned 64-bit value stored in images.bin."""
    if point3D_id == INVALID_POINT3D_ID:
        return COLMAP_INVALID_POINT3D_ID
    return int(point3D_id) & UINT64_MASK


def from_binary_point3D_id(value: int) -> int:
    """64-bit value read from images.bin/images.txt -> internal point3D id.

    Observation ids are kept as signed 64-bit integers, so values above
    2**63 - 1 fold into the negative range (two's complement) and the
    unsigned maximum becomes INVALID_POINT3D_ID.
    """
    value = int(value)
    if value == COLMAP_INVALID_POINT3D_ID or value == INVALID_POINT3D_ID:
        return INVALID_POINT3D_ID
    if value >= 2**63:
        return value - 2**64
    return value


def to_text_point3D_id(point3D_id: int) -> str:
    """Internal point3D id -> token written in images.txt."""
    if point3D_id == INVALID_POINT3D_ID or point3D_id == COLMAP_INVALID_POINT3D_ID:
        return "-1"
    return str(int(point3D_id) & UINT64_MASK)
