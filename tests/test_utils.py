import os
import shutil
import tempfile
import unittest
import numpy as np

from colmapkit import Image, RigPose
from colmapkit.utils import qvec2rotmat, rotmat2qvec, find_model_path, detect_model_format


class TestUtils(unittest.TestCase):
    """Tests for utility functions."""

    def test_qvec2rotmat(self):
        """Test quaternion to rotation matrix conversion."""
        # Identity quaternion
        np.testing.assert_array_almost_equal(qvec2rotmat([1.0, 0.0, 0.0, 0.0]), np.eye(3))

        # 90 degree rotation around z
        s = np.sqrt(0.5)
        R = qvec2rotmat(np.array([s, 0.0, 0.0, s]))
        np.testing.assert_array_almost_equal(R, [[0, -1, 0], [1, 0, 0], [0, 0, 1]])

        with self.assertRaises(ValueError):
            qvec2rotmat([1.0, 0.0, 0.0])

    def test_rotmat2qvec(self):
        """Test rotation matrix to quaternion conversion."""
        np.testing.assert_array_almost_equal(rotmat2qvec(np.eye(3)), [1, 0, 0, 0])

        # 180 degree rotation around x takes the non-trace branch
        R = np.diag([1.0, -1.0, -1.0])
        np.testing.assert_array_almost_equal(rotmat2qvec(R), [0, 1, 0, 0])

    def test_round_trip(self):
        """Test that rotmat2qvec inverts qvec2rotmat with a non-negative w."""
        rng = np.random.default_rng(0)
        for _ in range(10):
            qvec = rng.normal(size=4)
            qvec /= np.linalg.norm(qvec)
            recovered = rotmat2qvec(qvec2rotmat(qvec))
            expected = qvec if qvec[0] >= 0 else -qvec
            np.testing.assert_array_almost_equal(recovered, expected)

    def test_image_pose(self):
        """Test camera center and world/camera transforms of an image."""
        s = np.sqrt(0.5)
        image = Image(1, "a.jpg", 1, [s, 0.0, 0.0, s], [1.0, 2.0, 3.0], xys=[], point3D_ids=[])

        w2c = image.get_world_to_camera_matrix()
        c2w = image.get_camera_to_world_matrix()
        np.testing.assert_array_almost_equal(w2c @ c2w, np.eye(4))
        np.testing.assert_array_almost_equal(c2w[:3, 3], image.get_camera_center())

    def test_rig_pose_matrix(self):
        """Test rig poses built from and converted to matrices."""
        transform = np.eye(4)
        transform[:3, :3] = qvec2rotmat([0.0, 0.0, 1.0, 0.0])
        transform[:3, 3] = [0.5, -1.0, 2.0]

        pose = RigPose.from_matrix(transform)
        np.testing.assert_array_almost_equal(pose.get_matrix(), transform)
        self.assertEqual(pose.to_values()[4:], (0.5, -1.0, 2.0))


class TestFindModelPath(unittest.TestCase):
    """Tests for locating models inside a project directory."""

    def setUp(self):
        self.temp_dir = tempfile.mkdtemp()

    def tearDown(self):
        shutil.rmtree(self.temp_dir)

    def _touch(self, directory, names):
        os.makedirs(directory, exist_ok=True)
        for name in names:
            open(os.path.join(directory, name), "w").close()

    def test_search_order(self):
        """Test that sparse/0 is preferred over sparse and the root."""
        self._touch(self.temp_dir, ["cameras.txt", "images.txt", "points3D.txt"])
        self.assertEqual(find_model_path(self.temp_dir), os.path.join(self.temp_dir))

        sparse = os.path.join(self.temp_dir, "sparse")
        self._touch(sparse, ["cameras.bin", "images.bin", "points3D.bin"])
        self.assertEqual(find_model_path(self.temp_dir), sparse)

        sparse0 = os.path.join(sparse, "0")
        self._touch(sparse0, ["cameras.txt", "images.txt", "points3D.txt"])
        self.assertEqual(find_model_path(self.temp_dir), sparse0)

    def test_incomplete_model(self):
        """Test that a model with a missing file is not detected."""
        self._touch(self.temp_dir, ["cameras.bin", "images.bin"])
        self.assertIsNone(find_model_path(self.temp_dir))
        self.assertEqual(detect_model_format(self.temp_dir), "")

    def test_binary_preferred(self):
        """Test that binary wins when both formats are complete."""
        self._touch(self.temp_dir, ["cameras.bin", "images.bin", "points3D.bin",
                                    "cameras.txt", "images.txt", "points3D.txt"])
        self.assertEqual(detect_model_format(self.temp_dir), ".bin")
        self.assertEqual(detect_model_format(os.path.join(self.temp_dir, "missing")), "")


if __name__ == "__main__":
    unittest.main()
