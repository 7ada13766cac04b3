import unittest
import numpy as np

from colmapkit import Camera
from colmapkit.types import (
    CAMERA_MODELS,
    CAMERA_MODEL_IDS,
    CAMERA_MODEL_NAMES,
    CameraModelType,
    FISHEYE_MODELS,
    PERSPECTIVE_MODELS,
    INVALID_POINT3D_ID,
    COLMAP_INVALID_POINT3D_ID,
    resolve_model,
    to_binary_point3D_id,
    from_binary_point3D_id,
    to_text_point3D_id,
)


class TestCameraModels(unittest.TestCase):
    """Tests for the camera model table."""

    def test_parameter_counts(self):
        """Test the number of parameters of every model."""
        expected = {
            "SIMPLE_PINHOLE": 3, "PINHOLE": 4, "SIMPLE_RADIAL": 4, "RADIAL": 5,
            "OPENCV": 8, "OPENCV_FISHEYE": 8, "FULL_OPENCV": 12, "FOV": 5,
            "SIMPLE_RADIAL_FISHEYE": 4, "RADIAL_FISHEYE": 5, "THIN_PRISM_FISHEYE": 12,
            "RAD_TAN_THIN_PRISM_FISHEYE": 16,
        }
        self.assertEqual({name: model.num_params for name, model in CAMERA_MODEL_NAMES.items()}, expected)

    def test_ids_match_enum(self):
        """Test that model ids follow the enum and both lookup tables agree."""
        self.assertEqual(len(CAMERA_MODELS), len(CameraModelType))
        for model in CAMERA_MODELS:
            self.assertEqual(CameraModelType(model.model_id).name, model.model_name)
            self.assertIs(CAMERA_MODEL_IDS[model.model_id], CAMERA_MODEL_NAMES[model.model_name])

    def test_families_are_disjoint(self):
        """Test that no model is both perspective and fisheye."""
        self.assertFalse(PERSPECTIVE_MODELS & FISHEYE_MODELS)

    def test_resolve_model(self):
        """Test model lookup by name, id and enum member."""
        self.assertEqual(resolve_model("OPENCV").model_id, 4)
        self.assertEqual(resolve_model(4).model_name, "OPENCV")
        self.assertEqual(resolve_model(CameraModelType.FOV).model_name, "FOV")

        with self.assertRaises(ValueError):
            resolve_model("UNKNOWN")
        with self.assertRaises(ValueError):
            resolve_model(42)


class TestPoint3DIdConversion(unittest.TestCase):
    """Tests for the unmatched point id sentinel."""

    def test_binary_sentinel(self):
        """Test that the internal sentinel maps to the unsigned maximum and back."""
        self.assertEqual(to_binary_point3D_id(INVALID_POINT3D_ID), COLMAP_INVALID_POINT3D_ID)
        self.assertEqual(from_binary_point3D_id(COLMAP_INVALID_POINT3D_ID), INVALID_POINT3D_ID)
        self.assertEqual(to_binary_point3D_id(12), 12)
        self.assertEqual(from_binary_point3D_id(12), 12)

    def test_text_sentinel(self):
        """Test that the sentinel is written as -1 in text."""
        self.assertEqual(to_text_point3D_id(INVALID_POINT3D_ID), "-1")
        self.assertEqual(to_text_point3D_id(COLMAP_INVALID_POINT3D_ID), "-1")
        self.assertEqual(to_text_point3D_id(2**40), str(2**40))

    def test_large_ids_fold_to_signed(self):
        """Test that ids above the signed range use the two's complement view."""
        self.assertEqual(from_binary_point3D_id(2**63), -2**63)
        self.assertEqual(to_binary_point3D_id(-2**63), 2**63)


class TestCamera(unittest.TestCase):
    """Tests for the Camera class."""

    def test_camera_creation(self):
        """Test camera creation with correct parameters."""
        camera = Camera(id=1, model="PINHOLE", width=1920, height=1080,
                        params=[1000.0, 1000.0, 960.0, 540.0])

        self.assertEqual(camera.id, 1)
        self.assertEqual(camera.model, "PINHOLE")
        self.assertEqual(camera.model_id, 1)
        self.assertEqual(camera.model_type, CameraModelType.PINHOLE)
        self.assertEqual(camera.width, 1920)
        self.assertEqual(camera.height, 1080)
        self.assertEqual(camera.params.dtype, np.float64)
        np.testing.assert_array_equal(camera.params, [1000.0, 1000.0, 960.0, 540.0])

    def test_model_by_id(self):
        """Test that the model can be given as a numeric id."""
        camera = Camera(2, 0, 100, 100, [50.0, 50.0, 50.0])
        self.assertEqual(camera.model, "SIMPLE_PINHOLE")

    def test_wrong_parameter_count(self):
        """Test that creating a camera with wrong parameter count raises ValueError."""
        with self.assertRaises(ValueError):
            Camera(id=1, model="PINHOLE", width=1920, height=1080,
                   params=[1000.0, 1000.0, 960.0])

    def test_invalid_size_and_model(self):
        """Test that non-positive sizes and unknown models are rejected."""
        with self.assertRaises(ValueError):
            Camera(1, "PINHOLE", 0, 1080, [1.0, 1.0, 1.0, 1.0])
        with self.assertRaises(ValueError):
            Camera(1, "NOT_A_MODEL", 10, 10, [1.0])

    def test_immutable_params(self):
        """Test that the parameters cannot be changed in place."""
        source = [1000.0, 960.0, 540.0]
        camera = Camera(1, "SIMPLE_PINHOLE", 1920, 1080, source)
        source[0] = 0.0

        self.assertEqual(camera.params[0], 1000.0)
        with self.assertRaises(ValueError):
            camera.params[0] = 5.0

    def test_get_intrinsics(self):
        """Test named intrinsics for single focal length models."""
        camera = Camera(1, "SIMPLE_RADIAL", 640, 480, [500.0, 320.0, 240.0, 0.1])
        intrinsics = camera.get_intrinsics()

        self.assertEqual(intrinsics["fx"], 500.0)
        self.assertEqual(intrinsics["fy"], 500.0)
        self.assertEqual(intrinsics["k1"], 0.1)
        self.assertEqual(intrinsics["k2"], 0.0)
        self.assertEqual(intrinsics["omega"], 0.0)
        self.assertEqual(camera.get_params_dict(), {"f": 500.0, "cx": 320.0, "cy": 240.0, "k": 0.1})

    def test_calibration_matrix(self):
        """Test the calibration matrix and distortion parameters."""
        camera = Camera(1, "OPENCV", 1920, 1080, [1000.0, 1001.0, 960.0, 540.0, 0.1, 0.2, 0.3, 0.4])
        K = camera.get_calibration_matrix()

        np.testing.assert_array_equal(K, [[1000.0, 0.0, 960.0], [0.0, 1001.0, 540.0], [0.0, 0.0, 1.0]])
        np.testing.assert_array_equal(camera.get_distortion_params(), [0.1, 0.2, 0.3, 0.4])
        self.assertTrue(camera.has_distortion())

        pinhole = Camera(2, "SIMPLE_PINHOLE", 100, 100, [50.0, 50.0, 50.0])
        self.assertEqual(pinhole.get_distortion_params().size, 0)
        self.assertFalse(pinhole.has_distortion())

    def test_replace(self):
        """Test that replace returns a new camera and leaves the original untouched."""
        camera = Camera(1, "SIMPLE_PINHOLE", 1920, 1080, [1000.0, 960.0, 540.0])
        converted = camera.replace(model="PINHOLE", params=[1000.0, 1000.0, 960.0, 540.0])

        self.assertEqual(converted.id, 1)
        self.assertEqual(converted.model, "PINHOLE")
        self.assertEqual((converted.width, converted.height), (1920, 1080))
        self.assertEqual(camera.model, "SIMPLE_PINHOLE")
        self.assertNotEqual(camera, converted)

    def test_equality(self):
        """Test value equality and hashing."""
        a = Camera(1, "PINHOLE", 10, 10, [1.0, 2.0, 3.0, 4.0])
        b = Camera(1, "PINHOLE", 10, 10, np.array([1.0, 2.0, 3.0, 4.0]))
        self.assertEqual(a, b)
        self.assertEqual(hash(a), hash(b))
        self.assertIn("PINHOLE", repr(a))


if __name__ == "__main__":
    unittest.main()
