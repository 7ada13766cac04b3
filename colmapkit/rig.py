import numpy as np
from numpy.typing import NDArray
from typing import Iterable, Optional, Sequence, Tuple, Union

from .types import SensorType
from .utils import qvec2rotmat, rotmat2qvec


class SensorId:
    """A (sensor type, sensor id) pair. For camera sensors the id is a camera id."""

    __slots__ = ['_type', '_id']

    def __init__(self, type: Union[SensorType, int], id: int):
        self._type = SensorType(type)
        self._id = int(id)

    @property
    def type(self) -> SensorType:
        return self._type

    @property
    def id(self) -> int:
        return self._id

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, SensorId):
            return NotImplemented
        return self._type == other._type and self._id == other._id

    def __hash__(self) -> int:
        return hash((self._type, self._id))

    def __repr__(self) -> str:
        return f"SensorId({self._type.name}, {self._id})"


class RigPose:
    """Rigid transform stored as quaternion [w, x, y, z] and translation [x, y, z]."""

    __slots__ = ['_qvec', '_tvec']

    def __init__(self, qvec: Union[NDArray[np.float64], Sequence[float]],
                 tvec: Union[NDArray[np.float64], Sequence[float]]):
        qvec_arr = np.array(qvec, dtype=np.float64)
        tvec_arr = np.array(tvec, dtype=np.float64)
        if qvec_arr.shape != (4,) or tvec_arr.shape != (3,):
            raise ValueError("qvec must have shape (4,) and tvec shape (3,)")
        qvec_arr.setflags(write=False)
        tvec_arr.setflags(write=False)
        self._qvec = qvec_arr
        self._tvec = tvec_arr

    @classmethod
    def identity(cls) -> 'RigPose':
        return cls([1.0, 0.0, 0.0, 0.0], [0.0, 0.0, 0.0])

    @classmethod
    def from_values(cls, values: Sequence[float]) -> 'RigPose':
        """Build a pose from the 7 serialized values (qw, qx, qy, qz, tx, ty, tz)."""
        if len(values) != 7:
            raise ValueError(f"A pose needs 7 values, got {len(values)}")
        return cls(values[:4], values[4:])

    @classmethod
    def from_matrix(cls, transform: np.ndarray) -> 'RigPose':
        """Build a pose from a 4x4 (or 3x4) rigid transformation matrix."""
        transform = np.asarray(transform, dtype=np.float64)
        return cls(rotmat2qvec(transform[:3, :3]), transform[:3, 3])

    @property
    def qvec(self) -> NDArray[np.float64]:
        return self._qvec

    @property
    def tvec(self) -> NDArray[np.float64]:
        return self._tvec

    def to_values(self) -> Tuple[float, ...]:
        return tuple(float(v) for v in self._qvec) + tuple(float(v) for v in self._tvec)

    def get_matrix(self) -> np.ndarray:
        """Returns the 4x4 transformation matrix."""
        transform = np.eye(4, dtype=np.float64)
        transform[:3, :3] = qvec2rotmat(self._qvec)
        transform[:3, 3] = self._tvec
        return transform

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, RigPose):
            return NotImplemented
        return bool(np.allclose(self._qvec, other._qvec) and np.allclose(self._tvec, other._tvec))

    def __hash__(self) -> int:
        return hash(self.to_values())

    def __repr__(self) -> str:
        return f"RigPose(qvec={self._qvec.tolist()}, tvec={self._tvec.tolist()})"


class RigSensor:
    """A non-reference sensor of a rig with its optional sensor-from-rig pose."""

    __slots__ = ['_sensor_id', '_pose']

    def __init__(self, sensor_id: SensorId, pose: Optional[RigPose] = None):
        self._sensor_id = sensor_id
        self._pose = pose

    @property
    def sensor_id(self) -> SensorId:
        return self._sensor_id

    @property
    def pose(self) -> Optional[RigPose]:
        return self._pose

    @property
    def has_pose(self) -> bool:
        return self._pose is not None

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, RigSensor):
            return NotImplemented
        return self._sensor_id == other._sensor_id and self._pose == other._pose

    def __hash__(self) -> int:
        return hash((self._sensor_id, self._pose))

    def __repr__(self) -> str:
        return f"RigSensor({self._sensor_id!r}, has_pose={self.has_pose})"


class Rig:
    """
    A rigid group of sensors.

    The reference sensor defines the rig frame (implicit identity pose).
    `sensors` holds only the additional, non-reference sensors. A rig without
    a reference sensor has no sensors at all.
    """

    __slots__ = ['_id', '_ref_sensor_id', '_sensors']

    def __init__(self, id: int, ref_sensor_id: Optional[SensorId],
                 sensors: Iterable[RigSensor] = ()):
        sensors = tuple(sensors)
        if ref_sensor_id is None and sensors:
            raise ValueError(f"Rig {id} has sensors but no reference sensor")
        self._id = int(id)
        self._ref_sensor_id = ref_sensor_id
        self._sensors = sensors

    @property
    def id(self) -> int:
        return self._id

    @property
    def ref_sensor_id(self) -> Optional[SensorId]:
        return self._ref_sensor_id

    @property
    def sensors(self) -> Tuple[RigSensor, ...]:
        return self._sensors

    def num_sensors(self) -> int:
        """Number of sensors including the reference sensor."""
        if self._ref_sensor_id is None:
            return 0
        return len(self._sensors) + 1

    def get_sensor_ids(self) -> Tuple[SensorId, ...]:
        if self._ref_sensor_id is None:
            return ()
        return (self._ref_sensor_id,) + tuple(sensor.sensor_id for sensor in self._sensors)

    def get_sensor_from_rig(self, sensor_id: SensorId) -> Optional[RigPose]:
        """Pose of a sensor in the rig frame; identity for the reference sensor, None if unknown."""
        if sensor_id == self._ref_sensor_id:
            return RigPose.identity()
        for sensor in self._sensors:
            if sensor.sensor_id == sensor_id:
                return sensor.pose
        return None

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Rig):
            return NotImplemented
        return self._id == other._id and \
               self._ref_sensor_id == other._ref_sensor_id and \
               self._sensors == other._sensors

    def __hash__(self) -> int:
        return hash((self._id, self._ref_sensor_id, self._sensors))

    def __repr__(self) -> str:
        return f"Rig(id={self._id}, ref={self._ref_sensor_id!r}, num_sensors={self.num_sensors()})"


class FrameDataMapping:
    """Maps a sensor of a frame to its captured data (image id for cameras)."""

    __slots__ = ['_sensor_id', '_data_id']

    def __init__(self, sensor_id: SensorId, data_id: int):
        self._sensor_id = sensor_id
        self._data_id = int(data_id)

    @property
    def sensor_id(self) -> SensorId:
        return self._sensor_id

    @property
    def data_id(self) -> int:
        return self._data_id

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, FrameDataMapping):
            return NotImplemented
        return self._sensor_id == other._sensor_id and self._data_id == other._data_id

    def __hash__(self) -> int:
        return hash((self._sensor_id, self._data_id))

    def __repr__(self) -> str:
        return f"FrameDataMapping({self._sensor_id!r}, data_id={self._data_id})"


class Frame:
    """One capture instant of a rig: rig-from-world pose plus the data captured by each sensor."""

    __slots__ = ['_id', '_rig_id', '_rig_from_world', '_data_ids']

    def __init__(self, id: int, rig_id: int, rig_from_world: RigPose,
                 data_ids: Iterable[FrameDataMapping] = ()):
        self._id = int(id)
        self._rig_id = int(rig_id)
        self._rig_from_world = rig_from_world
        self._data_ids = tuple(data_ids)

    @property
    def id(self) -> int:
        return self._id

    @property
    def rig_id(self) -> int:
        return self._rig_id

    @property
    def rig_from_world(self) -> RigPose:
        return self._rig_from_world

    @property
    def data_ids(self) -> Tuple[FrameDataMapping, ...]:
        return self._data_ids

    def get_image_ids(self) -> Tuple[int, ...]:
        """Data ids of the camera sensors, which are image ids."""
        return tuple(mapping.data_id for mapping in self._data_ids
                     if mapping.sensor_id.type == SensorType.CAMERA)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Frame):
            return NotImplemented
        return self._id == other._id and \
               self._rig_id == other._rig_id and \
               self._rig_from_world == other._rig_from_world and \
               self._data_ids == other._data_ids

    def __hash__(self) -> int:
        return hash((self._id, self._rig_id, self._data_ids))

    def __repr__(self) -> str:
        return f"Frame(id={self._id}, rig_id={self._rig_id}, {len(self._data_ids)} data ids)"
