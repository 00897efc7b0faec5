"""Tests for the calibration script.

This module runs the calibration script end to end, from a calibration
file on disk to the JSON report.
"""

import json
import os
import shutil
import sys
import tempfile
import unittest
from pathlib import Path
from unittest import mock

import numpy as np
import pytest
import yaml

# Add parent directory to path
sys.path.append(str(Path(__file__).resolve().parent.parent))

from photomatch.calibration import CalibrationAxes, InvertedAxes
from scripts import run_calibration


class TestCalibrationScript(unittest.TestCase):
    """Test the calibration script."""

    @classmethod
    def setUpClass(cls):
        """Set up test fixtures for script tests."""
        cls.test_output_dir = tempfile.mkdtemp()

    @classmethod
    def tearDownClass(cls):
        """Clean up test fixtures."""
        if hasattr(cls, "test_output_dir") and os.path.exists(cls.test_output_dir):
            shutil.rmtree(cls.test_output_dir)

    def write_yaml(self, name, data):
        path = os.path.join(self.test_output_dir, name)
        with open(path, "w") as f:
            yaml.safe_dump(data, f)
        return path

    def square_calibration(self, name="square.yaml", **overrides):
        data = {
            "image_width": 640,
            "image_height": 480,
            "corners": [[0, 0], [100, 0], [0, 100], [100, 100]],
        }
        data.update(overrides)
        return self.write_yaml(name, data)

    def test_report(self):
        """Test the report of a valid calibration."""
        report = run_calibration.run_calibration(self.square_calibration())

        self.assertTrue(report["valid"])
        self.assertIsNone(report["reason"])
        self.assertEqual((report["image_width"], report["image_height"]), (640, 480))
        self.assertAlmostEqual(report["focal_length"], 640)
        np.testing.assert_allclose(report["camera_center"], [3.2, 2.4, -6.4], atol=1e-9)
        np.testing.assert_allclose(report["projected_axes"]["origin"], [0, 0], atol=1e-6)
        np.testing.assert_allclose(report["projected_axes"]["x"], [100, 0], atol=1e-6)
        np.testing.assert_allclose(report["projected_axes"]["y"], [0, 100], atol=1e-6)
        self.assertTrue(report["frustum"]["valid"])
        self.assertTrue(report["frustum"]["origin_inside"])
        self.assertLess(report["corner_rmse"], 1e-6)

    def test_nested_calibration_section(self):
        """A calibration file may nest its values under 'calibration'."""
        path = self.write_yaml("nested.yaml", {
            "calibration": {
                "image_width": 640,
                "image_height": 480,
                "corners": [[0, 0], [100, 0], [0, 100], [100, 100]],
                "axes": "XZ",
            }
        })
        report = run_calibration.run_calibration(path)

        self.assertTrue(report["valid"])
        np.testing.assert_allclose(report["projected_axes"]["x"], [100, 0], atol=1e-6)

    def test_config_defaults(self):
        """Fields missing from the calibration file come from the config."""
        config_path = self.write_yaml("config.yaml", {"calibration": {"scale": 2.0}})
        report = run_calibration.run_calibration(self.square_calibration(), config_path)

        # One model unit is half a square side
        np.testing.assert_allclose(report["projected_axes"]["x"], [50, 0], atol=1e-6)
        self.assertLess(report["corner_rmse"], 1e-6)

    def test_square_world_corners(self):
        """Test the world corners of the calibration square."""
        calibration_input = run_calibration.CalibrationInput(
            640, 480, (), axes=CalibrationAxes.ZY, inverted=InvertedAxes(z=True), scale=2.0
        )
        corners = run_calibration.calibration_square_world(calibration_input)

        self.assertEqual([c.to_array().tolist() for c in corners], [
            [0, 0, 0], [0, 0, -2], [0, 2, 0], [0, 2, -2],
        ])

    def test_invalid_calibration(self):
        """A degenerate square gives an invalid report."""
        path = self.square_calibration("degenerate.yaml", corners=[[0, 0], [50, 50], [100, 100], [0, 100]])
        report = run_calibration.run_calibration(path)

        self.assertFalse(report["valid"])
        self.assertIsNotNone(report["reason"])
        self.assertNotIn("camera_center", report)

    def test_main_writes_report(self):
        """Test the command line entry point."""
        output_path = os.path.join(self.test_output_dir, "report.json")
        argv = ["run_calibration.py", "-i", self.square_calibration(), "-o", output_path]

        with mock.patch.object(sys, "argv", argv):
            run_calibration.main()

        with open(output_path) as f:
            report = json.load(f)
        self.assertTrue(report["valid"])

    def test_main_fails_on_bad_input(self):
        """Malformed or invalid calibrations exit with status 1."""
        bad_width = self.square_calibration("bad_width.yaml", image_width=-5)
        degenerate = self.square_calibration("degenerate.yaml", corners=[[0, 0], [50, 50], [100, 100], [0, 100]])

        for path in (bad_width, degenerate):
            argv = ["run_calibration.py", "-i", path, "-o", os.path.join(self.test_output_dir, "out.json")]
            with mock.patch.object(sys, "argv", argv):
                with pytest.raises(SystemExit) as excinfo:
                    run_calibration.main()
            self.assertEqual(excinfo.value.code, 1)


if __name__ == "__main__":
    unittest.main()
