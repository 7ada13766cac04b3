import numpy as np
from typing import Dict, Optional, Sequence, Union
from numpy.typing import NDArray

from .types import CameraModel, CameraModelType, resolve_model

# Every named intrinsic a camera model can carry; missing entries read as 0
INTRINSIC_NAMES = (
    "fx", "fy", "cx", "cy",
    "k1", "k2", "k3", "k4", "k5", "k6",
    "p1", "p2", "omega",
    "sx1", "sy1", "sx2", "sy2",
)

_PARAM_ALIASES = {"k": "k1"}


class Camera:
    """
    Represents a camera in a COLMAP reconstruction, holding intrinsic parameters.
    Cameras are immutable: conversions produce new Camera instances.
    """

    __slots__ = ['_id', '_model', '_width', '_height', '_params']

    def __init__(self, id: int, model: Union[str, int, CameraModelType], width: int, height: int,
                 params: Union[NDArray[np.float64], Sequence[float]]):
        """
        Initializes a Camera instance.

        Args:
            id: Unique camera identifier.
            model: Camera model name (e.g. "PINHOLE"), numeric id or CameraModelType.
            width: Image width in pixels.
            height: Image height in pixels.
            params: Numpy array or list of camera intrinsic parameters.

        Raises:
            ValueError: If the model is unknown, the size is not positive, or the
                        number of parameters does not match the specified model.
        """
        camera_model = resolve_model(model)
        if width <= 0 or height <= 0:
            raise ValueError("Camera width and height must be positive integers.")

        params_array = np.array(params, dtype=np.float64).reshape(-1)
        if params_array.shape[0] != camera_model.num_params:
            raise ValueError(
                f"Camera model '{camera_model.model_name}' expects {camera_model.num_params} parameters, "
                f"but received array of length {params_array.shape[0]}."
            )
        params_array.setflags(write=False)

        self._id = int(id)
        self._model = camera_model
        self._width = int(width)
        self._height = int(height)
        self._params = params_array

    @property
    def id(self) -> int:
        return self._id

    @property
    def model(self) -> str:
        """COLMAP name of the camera model."""
        return self._model.model_name

    @property
    def model_id(self) -> int:
        return self._model.model_id

    @property
    def model_type(self) -> CameraModelType:
        return CameraModelType(self._model.model_id)

    @property
    def camera_model(self) -> CameraModel:
        return self._model

    @property
    def width(self) -> int:
        return self._width

    @property
    def height(self) -> int:
        return self._height

    @property
    def params(self) -> NDArray[np.float64]:
        return self._params

    @property
    def param_names(self):
        return self._model.param_names

    def get_num_params(self) -> int:
        """Returns the number of parameters for this camera model."""
        return self._model.num_params

    def get_params_dict(self) -> Dict[str, float]:
        """Parameters keyed by their model-specific names."""
        return {name: float(value) for name, value in zip(self._model.param_names, self._params)}

    def get_intrinsics(self) -> Dict[str, float]:
        """
        Returns all named intrinsics for this camera.

        Single focal length models fill both fx and fy, 'k' is reported as k1,
        and parameters the model does not have are 0.
        """
        intrinsics = dict.fromkeys(INTRINSIC_NAMES, 0.0)
        for name, value in zip(self._model.param_names, self._params):
            if name == "f":
                intrinsics["fx"] = intrinsics["fy"] = float(value)
            else:
                intrinsics[_PARAM_ALIASES.get(name, name)] = float(value)
        return intrinsics

    def get_calibration_matrix(self) -> np.ndarray:
        """Returns the 3x3 camera calibration matrix (K)."""
        intrinsics = self.get_intrinsics()
        K = np.eye(3, dtype=np.float64)
        K[0, 0] = intrinsics["fx"]
        K[1, 1] = intrinsics["fy"]
        K[0, 2] = intrinsics["cx"]
        K[1, 2] = intrinsics["cy"]
        return K

    def get_distortion_params(self) -> np.ndarray:
        """
        Returns the distortion parameters (everything after the focal length
        and principal point) as a NumPy array. Empty for pinhole models.
        """
        num_intrinsic = 3 if self._model.param_names[0] == "f" else 4
        return self._params[num_intrinsic:].copy()

    def has_distortion(self) -> bool:
        """Checks if the camera model includes distortion parameters."""
        return self.model_type not in (CameraModelType.SIMPLE_PINHOLE, CameraModelType.PINHOLE)

    def replace(self, model: Optional[Union[str, int, CameraModelType]] = None,
                params: Optional[Sequence[float]] = None,
                width: Optional[int] = None, height: Optional[int] = None) -> 'Camera':
        """Returns a new Camera with the given fields replaced."""
        return Camera(
            id=self._id,
            model=model if model is not None else self._model,
            width=width if width is not None else self._width,
            height=height if height is not None else self._height,
            params=params if params is not None else self._params,
        )

    def __repr__(self) -> str:
        params_str = np.array2string(self._params, precision=3, separator=', ', suppress_small=True)
        return (f"Camera(id={self._id}, model='{self.model}', "
                f"width={self._width}, height={self._height}, "
                f"params={params_str})")

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Camera):
            return NotImplemented
        return self._id == other._id and \
               self.model_id == other.model_id and \
               self._width == other._width and \
               self._height == other._height and \
               np.array_equal(self._params, other._params)

    def __hash__(self) -> int:
        return hash((self._id, self.model_id, self._width, self._height, self._params.tobytes()))
