import math
import unittest
import numpy as np

from colmapkit import (
    Camera,
    CameraModelType,
    Compatibility,
    ExactConversion,
    ApproximateConversion,
    IncompatibleConversion,
    can_convert,
    convert_camera_model,
    create_converted_camera,
    get_conversion_preview,
    get_valid_target_models,
)
from colmapkit.conversion import Characterization, EXPANSIONS, REDUCTIONS
from colmapkit.types import FISHEYE_MODELS, PERSPECTIVE_MODELS


class TestCanConvert(unittest.TestCase):
    """Tests for model pair classification."""

    def test_same_model(self):
        """Test that every model converts exactly to itself."""
        for model in CameraModelType:
            self.assertEqual(can_convert(model, model), Compatibility.EXACT)

    def test_cross_family_exclusion(self):
        """Test that perspective and fisheye models never convert into each other."""
        for perspective in PERSPECTIVE_MODELS:
            for fisheye in FISHEYE_MODELS:
                self.assertEqual(can_convert(perspective, fisheye), Compatibility.INCOMPATIBLE)
                self.assertEqual(can_convert(fisheye, perspective), Compatibility.INCOMPATIBLE)

    def test_sink_models(self):
        """Test that nothing converts out of a sink and basic models convert into it approximately."""
        sinks = (CameraModelType.FULL_OPENCV, CameraModelType.RAD_TAN_THIN_PRISM_FISHEYE)
        basic = ("SIMPLE_PINHOLE", "PINHOLE", "SIMPLE_RADIAL", "RADIAL", "OPENCV")
        for sink in sinks:
            for model in CameraModelType:
                if model != sink:
                    self.assertEqual(can_convert(sink, model), Compatibility.INCOMPATIBLE)
            for name in basic:
                self.assertEqual(can_convert(name, sink), Compatibility.APPROXIMATE)

        self.assertEqual(can_convert("FOV", "FULL_OPENCV"), Compatibility.INCOMPATIBLE)
        self.assertEqual(get_valid_target_models("FULL_OPENCV"), [])

    def test_fov_links(self):
        """Test that FOV only links to the radial models, approximately."""
        for name in ("SIMPLE_RADIAL", "RADIAL"):
            self.assertEqual(can_convert("FOV", name), Compatibility.APPROXIMATE)
            self.assertEqual(can_convert(name, "FOV"), Compatibility.APPROXIMATE)
        for name in ("SIMPLE_PINHOLE", "PINHOLE", "OPENCV"):
            self.assertEqual(can_convert("FOV", name), Compatibility.INCOMPATIBLE)
            self.assertEqual(can_convert(name, "FOV"), Compatibility.INCOMPATIBLE)

    def test_expansions_and_reductions(self):
        """Test the fixed expansion and reduction lists."""
        self.assertEqual(can_convert("PINHOLE", "RADIAL"), Compatibility.EXACT)
        self.assertEqual(can_convert("RADIAL", "OPENCV"), Compatibility.EXACT)
        self.assertEqual(can_convert("OPENCV_FISHEYE", "THIN_PRISM_FISHEYE"), Compatibility.EXACT)
        self.assertEqual(can_convert("OPENCV", "SIMPLE_RADIAL"), Compatibility.APPROXIMATE)
        self.assertEqual(can_convert("THIN_PRISM_FISHEYE", "SIMPLE_RADIAL_FISHEYE"), Compatibility.APPROXIMATE)
        self.assertEqual(can_convert("OPENCV", "PINHOLE"), Compatibility.INCOMPATIBLE)
        self.assertFalse(EXPANSIONS & REDUCTIONS)

    def test_reverse_of_expansion_is_reduction(self):
        """Test that every exact expansion can be undone approximately."""
        for source, target in EXPANSIONS:
            if (target, source) in REDUCTIONS:
                self.assertEqual(can_convert(target, source), Compatibility.APPROXIMATE)

    def test_valid_target_models(self):
        """Test the list of valid targets for SIMPLE_PINHOLE."""
        targets = dict(get_valid_target_models("SIMPLE_PINHOLE"))

        self.assertEqual(targets[CameraModelType.PINHOLE], Compatibility.EXACT)
        self.assertEqual(targets[CameraModelType.OPENCV], Compatibility.EXACT)
        self.assertEqual(targets[CameraModelType.FULL_OPENCV], Compatibility.APPROXIMATE)
        self.assertNotIn(CameraModelType.SIMPLE_PINHOLE, targets)
        self.assertNotIn(CameraModelType.FOV, targets)
        self.assertNotIn(CameraModelType.OPENCV_FISHEYE, targets)


class TestConvertCameraModel(unittest.TestCase):
    """Tests for parameter conversion."""

    def test_simple_pinhole_to_pinhole(self):
        """Test that SIMPLE_PINHOLE expands to PINHOLE exactly."""
        camera = Camera(1, "SIMPLE_PINHOLE", 1920, 1080, [1000, 960, 540])
        result = convert_camera_model(camera, "PINHOLE")

        self.assertIsInstance(result, ExactConversion)
        self.assertEqual(result.compatibility, Compatibility.EXACT)
        self.assertEqual(result.params.tolist(), [1000.0, 1000.0, 960.0, 540.0])
        self.assertEqual(result.max_error, 0.0)
        self.assertIsNone(result.warning)

    def test_expansion_appends_zeros(self):
        """Test that expansions fill missing parameters with zeros."""
        camera = Camera(1, "SIMPLE_RADIAL", 640, 480, [500, 320, 240, 0.05])
        result = convert_camera_model(camera, "OPENCV")

        self.assertIsInstance(result, ExactConversion)
        self.assertEqual(result.params.tolist(), [500.0, 500.0, 320.0, 240.0, 0.05, 0.0, 0.0, 0.0])

    def test_radial_reduction_below_threshold(self):
        """Test that a negligible k2 makes the reduction exact."""
        camera = Camera(1, "RADIAL", 1920, 1080, [1000, 960, 540, 0.1, 1e-8])
        result = convert_camera_model(camera, "SIMPLE_RADIAL")

        self.assertIsInstance(result, ExactConversion)
        self.assertEqual(result.params.tolist(), [1000.0, 960.0, 540.0, 0.1])

    def test_radial_reduction_above_threshold(self):
        """Test that a significant k2 makes the reduction approximate with a warning."""
        camera = Camera(1, "RADIAL", 1920, 1080, [1000, 960, 540, 0.1, 0.05])
        result = convert_camera_model(camera, "SIMPLE_RADIAL")

        self.assertIsInstance(result, ApproximateConversion)
        self.assertIn("k2", result.warning)
        self.assertGreater(result.max_error, 0)
        self.assertAlmostEqual(result.max_error, 0.05)
        self.assertEqual(result.params.tolist(), [1000.0, 960.0, 540.0, 0.1])

    def test_custom_threshold(self):
        """Test that the threshold decides whether dropped values count."""
        camera = Camera(1, "RADIAL", 1920, 1080, [1000, 960, 540, 0.1, 0.05])
        result = convert_camera_model(camera, "SIMPLE_RADIAL", threshold=0.1)
        self.assertIsInstance(result, ExactConversion)

    def test_opencv_reduction_warnings(self):
        """Test that each dropped group is named in the warning."""
        camera = Camera(1, "OPENCV", 1920, 1080, [1000, 1000, 960, 540, 0.1, 0.02, 0.001, 0.0])
        result = convert_camera_model(camera, "SIMPLE_RADIAL")

        self.assertIsInstance(result, ApproximateConversion)
        self.assertEqual(result.warning, "Dropping k2=2.000e-02; Dropping tangential: p1=1.000e-03, p2=0.000e+00")
        self.assertAlmostEqual(result.max_error, 0.02)
        self.assertEqual(result.params.tolist(), [1000.0, 960.0, 540.0, 0.1])

    def test_focal_length_mean(self):
        """Test that a large aspect ratio difference uses the mean focal length."""
        camera = Camera(1, "PINHOLE", 1920, 1080, [1000, 1100, 960, 540])
        result = convert_camera_model(camera, "SIMPLE_PINHOLE")

        self.assertIsInstance(result, ApproximateConversion)
        self.assertEqual(result.params.tolist(), [1050.0, 960.0, 540.0])
        self.assertIn("mean f=1050.00", result.warning)
        self.assertAlmostEqual(result.max_error, 50.0 / 1050.0 * 960.0)

    def test_focal_length_small_difference(self):
        """Test that a small aspect ratio difference keeps fx."""
        camera = Camera(1, "PINHOLE", 1920, 1080, [1000, 1005, 960, 540])
        result = convert_camera_model(camera, "SIMPLE_PINHOLE")

        self.assertIsInstance(result, ExactConversion)
        self.assertEqual(result.params.tolist(), [1000.0, 960.0, 540.0])

    def test_fisheye_index_remapping_round_trip(self):
        """Test OPENCV_FISHEYE -> THIN_PRISM_FISHEYE -> OPENCV_FISHEYE."""
        params = [400.0, 401.0, 320.0, 240.0, 0.1, -0.02, 0.003, -0.0004]
        camera = Camera(1, "OPENCV_FISHEYE", 640, 480, params)

        forward = convert_camera_model(camera, "THIN_PRISM_FISHEYE")
        self.assertIsInstance(forward, ExactConversion)
        self.assertEqual(forward.params.tolist(),
                         [400.0, 401.0, 320.0, 240.0, 0.1, -0.02, 0.0, 0.0, 0.003, -0.0004, 0.0, 0.0])

        intermediate = camera.replace(model="THIN_PRISM_FISHEYE", params=forward.params)
        back = convert_camera_model(intermediate, "OPENCV_FISHEYE")
        self.assertIsInstance(back, ExactConversion)
        self.assertEqual(back.params.tolist(), params)

    def test_thin_prism_reduction(self):
        """Test that thin prism and tangential terms are reported when dropped."""
        camera = Camera(1, "THIN_PRISM_FISHEYE", 640, 480,
                        [400, 400, 320, 240, 0.1, 0.0, 0.0, 0.0, 0.0, 0.0, 0.002, 0.0])
        result = convert_camera_model(camera, "OPENCV_FISHEYE")

        self.assertIsInstance(result, ApproximateConversion)
        self.assertIn("thin prism: sx1=2.000e-03, sy1=0.000e+00", result.warning)
        self.assertNotIn("tangential", result.warning)

    def test_same_model(self):
        """Test that converting to the same model returns the parameters unchanged."""
        camera = Camera(1, "FOV", 640, 480, [500, 500, 320, 240, 0.3])
        result = convert_camera_model(camera, CameraModelType.FOV)
        self.assertIsInstance(result, ExactConversion)
        np.testing.assert_array_equal(result.params, camera.params)

    def test_incompatible(self):
        """Test that incompatible conversions carry a reason instead of raising."""
        camera = Camera(1, "OPENCV", 640, 480, [500, 500, 320, 240, 0, 0, 0, 0])
        result = convert_camera_model(camera, "OPENCV_FISHEYE")

        self.assertIsInstance(result, IncompatibleConversion)
        self.assertFalse(result.is_compatible)
        self.assertIsNone(result.params)
        self.assertIn("different projection models", result.reason)

        sink = Camera(2, "FULL_OPENCV", 640, 480, [500, 500, 320, 240] + [0.0] * 8)
        result = convert_camera_model(sink, "OPENCV")
        self.assertIsInstance(result, IncompatibleConversion)
        self.assertIn("FULL_OPENCV", result.reason)

    def test_unknown_target(self):
        """Test that an unknown target model raises ValueError."""
        camera = Camera(1, "PINHOLE", 640, 480, [500, 500, 320, 240])
        with self.assertRaises(ValueError):
            convert_camera_model(camera, "NOT_A_MODEL")

    def test_sink_is_approximate(self):
        """Test that conversions to a sink are approximate even when lossless."""
        camera = Camera(1, "OPENCV", 640, 480, [500, 500, 320, 240, 0.1, 0.01, 0.001, 0.002])
        result = convert_camera_model(camera, "FULL_OPENCV")

        self.assertIsInstance(result, ApproximateConversion)
        self.assertEqual(result.max_error, 0.0)
        self.assertIn("FULL_OPENCV", result.warning)
        self.assertEqual(result.params.tolist(),
                         [500.0, 500.0, 320.0, 240.0, 0.1, 0.01, 0.001, 0.002, 0.0, 0.0, 0.0, 0.0])

        result = convert_camera_model(camera, "RAD_TAN_THIN_PRISM_FISHEYE")
        self.assertIsInstance(result, ApproximateConversion)
        self.assertEqual(result.params.tolist(),
                         [500.0, 500.0, 320.0, 240.0, 0.1, 0.01, 0, 0, 0, 0, 0.001, 0.002, 0, 0, 0, 0])

    def test_result_params_read_only(self):
        """Test that result parameters cannot be modified."""
        camera = Camera(1, "SIMPLE_PINHOLE", 100, 100, [50, 50, 50])
        result = convert_camera_model(camera, "PINHOLE")
        with self.assertRaises(ValueError):
            result.params[0] = 1.0


class TestFovConversion(unittest.TestCase):
    """Tests for the Taylor link between FOV and the radial models."""

    def test_fov_to_simple_radial(self):
        """Test k1 = omega^2 / 3 with quality buckets."""
        for omega, expected_error, quality in ((0.05, 0.01, "good"), (0.3, 0.1, "rough"), (0.8, 0.5, "poor")):
            camera = Camera(1, "FOV", 640, 480, [500, 500, 320, 240, omega])
            result = convert_camera_model(camera, "SIMPLE_RADIAL")

            self.assertIsInstance(result, ApproximateConversion)
            self.assertAlmostEqual(result.params[3], omega * omega / 3.0)
            self.assertEqual(result.params[0], 500.0)
            self.assertEqual(result.max_error, expected_error)
            self.assertIn(quality, result.warning)

    def test_fov_to_radial(self):
        """Test that k2 is zero when converting FOV to RADIAL."""
        camera = Camera(1, "FOV", 640, 480, [500, 500, 320, 240, 0.3])
        result = convert_camera_model(camera, "RADIAL")
        self.assertEqual(result.params[4], 0.0)

    def test_fov_keeps_fx(self):
        """Test that FOV to a single-focal model takes fx even with a large aspect difference."""
        camera = Camera(1, "FOV", 640, 480, [1000, 1100, 320, 240, 0.05])
        result = convert_camera_model(camera, "SIMPLE_RADIAL")

        self.assertEqual(result.params[0], 1000.0)
        self.assertEqual(result.max_error, 0.01)
        self.assertNotIn("mean f", result.warning)

    def test_simple_radial_to_fov(self):
        """Test omega = sqrt(3 k1)."""
        camera = Camera(1, "SIMPLE_RADIAL", 640, 480, [500, 320, 240, 0.01])
        result = convert_camera_model(camera, "FOV")

        self.assertIsInstance(result, ApproximateConversion)
        self.assertEqual(result.params[:4].tolist(), [500.0, 500.0, 320.0, 240.0])
        self.assertAlmostEqual(result.params[4], math.sqrt(0.03))
        self.assertEqual(result.max_error, 0.1)
        self.assertIn("omega", result.warning)

    def test_fov_round_trip(self):
        """Test that FOV -> SIMPLE_RADIAL -> FOV recovers omega."""
        camera = Camera(1, "FOV", 640, 480, [500, 500, 320, 240, 0.2])
        radial = create_converted_camera(camera, "SIMPLE_RADIAL")
        back = create_converted_camera(radial, "FOV")
        self.assertAlmostEqual(back.params[4], 0.2)

    def test_negative_distortion_incompatible(self):
        """Test that FOV cannot represent non-positive k1 or a significant k2."""
        camera = Camera(1, "SIMPLE_RADIAL", 640, 480, [500, 320, 240, -0.01])
        result = convert_camera_model(camera, "FOV")
        self.assertIsInstance(result, IncompatibleConversion)
        self.assertIn("k > 0", result.reason)

        camera = Camera(1, "RADIAL", 640, 480, [500, 320, 240, 0.0, 0.0])
        result = convert_camera_model(camera, "FOV")
        self.assertIn("k1 > 0", result.reason)

        camera = Camera(1, "RADIAL", 640, 480, [500, 320, 240, 0.01, 0.01])
        result = convert_camera_model(camera, "FOV")
        self.assertIsInstance(result, IncompatibleConversion)
        self.assertIn("k2", result.reason)


class TestCreateConvertedCamera(unittest.TestCase):
    """Tests for building converted cameras."""

    def test_new_camera(self):
        """Test that the converted camera keeps id and size."""
        camera = Camera(5, "SIMPLE_PINHOLE", 1920, 1080, [1000, 960, 540])
        converted = create_converted_camera(camera, "RADIAL")

        self.assertEqual(converted.id, 5)
        self.assertEqual(converted.model, "RADIAL")
        self.assertEqual((converted.width, converted.height), (1920, 1080))
        self.assertEqual(converted.params.tolist(), [1000.0, 960.0, 540.0, 0.0, 0.0])
        self.assertEqual(camera.model, "SIMPLE_PINHOLE")

    def test_incompatible_returns_none(self):
        """Test that an incompatible conversion creates no camera."""
        camera = Camera(5, "SIMPLE_PINHOLE", 1920, 1080, [1000, 960, 540])
        self.assertIsNone(create_converted_camera(camera, "SIMPLE_RADIAL_FISHEYE"))


class TestConversionPreview(unittest.TestCase):
    """Tests for conversion previews."""

    def test_expansion_preview(self):
        """Test the preview of an expansion."""
        camera = Camera(1, "SIMPLE_RADIAL", 640, 480, [500, 320, 240, 0.05])
        preview = get_conversion_preview(camera, "OPENCV")

        self.assertEqual(preview.characterization, Characterization.EXPANSION)
        self.assertTrue(preview.is_expansion)
        self.assertFalse(preview.is_lossy)
        self.assertEqual(preview.description, "Adding 4 parameters (set to zero)")
        self.assertEqual(preview.source_param_names, ("f", "cx", "cy", "k"))
        self.assertEqual(preview.target_param_names, ("fx", "fy", "cx", "cy", "k1", "k2", "p1", "p2"))
        self.assertIsNone(preview.warning)

    def test_lossless_reduction_preview(self):
        """Test the preview of a reduction whose dropped values are zero."""
        camera = Camera(1, "RADIAL", 640, 480, [500, 320, 240, 0.05, 0.0])
        preview = get_conversion_preview(camera, "SIMPLE_RADIAL")

        self.assertEqual(preview.characterization, Characterization.EXACT)
        self.assertFalse(preview.is_lossy)
        self.assertEqual(preview.description, "Dropping: k2 (was zero)")

    def test_lossy_reduction_preview(self):
        """Test the preview of a lossy reduction."""
        camera = Camera(1, "OPENCV", 640, 480, [500, 500, 320, 240, 0.05, 0.01, 0.0, 0.0])
        preview = get_conversion_preview(camera, "SIMPLE_RADIAL")

        self.assertEqual(preview.characterization, Characterization.LOSSY)
        self.assertTrue(preview.is_lossy)
        self.assertIn("fy (aspect ratio preserved)", preview.description)
        self.assertIn("k2=1.000e-02", preview.description)
        self.assertIn("tangential (was zero)", preview.description)
        self.assertIn("k2", preview.warning)

    def test_fov_and_sink_previews(self):
        """Test previews of approximations."""
        camera = Camera(1, "SIMPLE_RADIAL", 640, 480, [500, 320, 240, 0.05])

        preview = get_conversion_preview(camera, "FOV")
        self.assertEqual(preview.characterization, Characterization.APPROXIMATION)
        self.assertTrue(preview.is_lossy)

        preview = get_conversion_preview(camera, "FULL_OPENCV")
        self.assertEqual(preview.characterization, Characterization.APPROXIMATION)
        self.assertTrue(preview.is_expansion)
        self.assertFalse(preview.is_lossy)
        self.assertEqual(preview.description, "Rational polynomial formula differs from simpler models")

    def test_incompatible_preview(self):
        """Test that incompatible conversions have no preview."""
        camera = Camera(1, "SIMPLE_RADIAL", 640, 480, [500, 320, 240, 0.05])
        self.assertIsNone(get_conversion_preview(camera, "OPENCV_FISHEYE"))


if __name__ == "__main__":
    unittest.main()
