__version__ = "0.2.0"

__all__ = [
    # Core classes
    "Camera",
    "Image",
    "Point3D",
    "Rig",
    "RigSensor",
    "RigPose",
    "SensorId",
    "Frame",
    "FrameDataMapping",
    "Reconstruction",
    # Types & Constants
    "CameraModel",
    "CameraModelType",
    "SensorType",
    "CAMERA_MODELS",
    "CAMERA_MODEL_IDS",
    "CAMERA_MODEL_NAMES",
    "INVALID_POINT3D_ID",
    # IO Functions
    "read_model",
    "write_model",
    "Point3DArrays",
    "points3D_to_arrays",
    "build_points3D_map",
    # Camera model conversion
    "Compatibility",
    "ExactConversion",
    "ApproximateConversion",
    "IncompatibleConversion",
    "ConversionPreview",
    "can_convert",
    "convert_camera_model",
    "create_converted_camera",
    "get_conversion_preview",
    "get_valid_target_models",
    "ValidationReport",
    "validate_conversion",
    # Utility functions
    "qvec2rotmat",
    "rotmat2qvec",
    "find_model_path",
    "detect_model_format",
]

from .camera import Camera
from .image import Image
from .point3d import Point3D
from .rig import Rig, RigSensor, RigPose, SensorId, Frame, FrameDataMapping
from .reconstruction import Reconstruction
from .types import (
    CameraModel,
    CameraModelType,
    SensorType,
    CAMERA_MODELS,
    CAMERA_MODEL_IDS,
    CAMERA_MODEL_NAMES,
    INVALID_POINT3D_ID,
)
from .io import read_model, write_model, Point3DArrays, points3D_to_arrays, build_points3D_map
from .conversion import (
    Compatibility,
    ExactConversion,
    ApproximateConversion,
    IncompatibleConversion,
    ConversionPreview,
    can_convert,
    convert_camera_model,
    create_converted_camera,
    get_conversion_preview,
    get_valid_target_models,
)
from .validation import ValidationReport, validate_conversion
from .utils import (
    qvec2rotmat,
    rotmat2qvec,
    find_model_path,
    detect_model_format,
)
