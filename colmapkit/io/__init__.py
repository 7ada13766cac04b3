import os
from typing import Dict, Optional, Union, TYPE_CHECKING

from ..utils import detect_model_format
from .data import Point3DArrays, points3D_to_arrays, build_points3D_map
from .stream import BinaryReader, BinaryWriter

from .text import read_text_model, write_text_model
from .binary import read_binary_model, write_binary_model, BINARY_FILES
from .text import TEXT_FILES, write_points_ply

# Avoid circular import for type hinting
if TYPE_CHECKING:
    from ..reconstruction import Reconstruction

ModelData = Dict[str, Optional[dict]]

__all__ = [
    "read_model",
    "write_model",
    "BinaryReader",
    "BinaryWriter",
    "Point3DArrays",
    "points3D_to_arrays",
    "build_points3D_map",
    "write_points_ply",
]

REQUIRED_ENTITIES = ("cameras", "images", "points3D")


def read_model(path: str, file_format: Optional[str] = None, lite: bool = False) -> ModelData:
    """
    Reads a COLMAP model from a directory into entity maps.

    Automatically detects the format (binary '.bin' or text '.txt') if not
    explicitly provided. Rigs and frames are read when their files exist.

    Args:
        path: Directory containing model files (cameras, images, points3D).
        file_format: Optional explicit format ('.bin' or '.txt').
        lite: If True, images keep only their observation counts.

    Returns:
        Dict with 'cameras', 'images', 'points3D', 'rigs' and 'frames' maps
        ('rigs'/'frames' are None when absent).

    Raises:
        FileNotFoundError: If path invalid or essential files missing.
        ValueError: If format unknown or a binary record is invalid.
        EOFError: If binary files are truncated.
    """
    if not os.path.isdir(path):
        raise FileNotFoundError(f"Input path is not a valid directory: {path}")

    resolved_format = file_format
    if resolved_format is None:
        resolved_format = detect_model_format(path)
        if not resolved_format:
            raise ValueError(f"Could not auto-detect COLMAP model format in '{path}'.")

    file_names = {".bin": BINARY_FILES, ".txt": TEXT_FILES}
    if resolved_format not in file_names:
        raise ValueError(f"Unsupported format '{resolved_format}'. Use '.bin' or '.txt'.")

    missing_files = [file_names[resolved_format][entity] for entity in REQUIRED_ENTITIES
                     if not os.path.isfile(os.path.join(path, file_names[resolved_format][entity]))]
    if missing_files:
        raise FileNotFoundError(f"Missing required {resolved_format} model file(s) in '{path}': {', '.join(missing_files)}")

    if resolved_format == ".bin":
        return read_binary_model(path, lite=lite)
    return read_text_model(path, lite=lite)


def write_model(data: Union[ModelData, 'Reconstruction'], output_path: str, binary: bool = True) -> None:
    """
    Writes a COLMAP model to a directory.

    Args:
        data: A Reconstruction or a dict of entity maps as returned by read_model.
        output_path: The directory where the model files will be saved.
        binary: If True, save in binary ('.bin') format; otherwise, text ('.txt').
    """
    # Local import to avoid a circular dependency at module level
    from ..reconstruction import Reconstruction
    if isinstance(data, Reconstruction):
        model = data.to_dict()
    elif isinstance(data, dict) and all(entity in data for entity in REQUIRED_ENTITIES):
        model = data
    else:
        raise TypeError("Input 'data' must be a Reconstruction or a dict with cameras, images and points3D")

    writer = write_binary_model if binary else write_text_model
    writer(model["cameras"], model["images"], model["points3D"], output_path,
           rigs=model.get("rigs"), frames=model.get("frames"))
