#!/usr/bin/env python3
"""
Single-Image Calibration

This script calibrates a camera from the four pixel corners of a calibration
square drawn on a photograph and reports the resulting camera: where the
world axes project, the view frustum state and the corner reprojection error.
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import Dict, List, Optional

import yaml

# Add parent directory to path
sys.path.append(str(Path(__file__).resolve().parent.parent))

from photomatch import calibration, config as config_module
from photomatch.calibration import CalibrationInput, CalibrationSolver
from photomatch.frustum import ViewFrustum
from photomatch.vectors import Vector2, Vector3


# Set up logging
logging.basicConfig(
    level=logging.INFO,
    format="[%(asctime)s] [%(levelname)s] [%(name)s] %(message)s",
    handlers=[
        logging.StreamHandler(),
    ],
)
logger = logging.getLogger("calibration")


def load_calibration(calibration_path: str, config: Dict) -> CalibrationInput:
    """Read a calibration file and merge it over the configured defaults.

    Args:
        calibration_path: YAML file with image_width, image_height, corners
            and optional axes, inverted, scale and focal_length
        config: Loaded configuration

    Returns:
        Validated calibration input
    """
    with open(calibration_path, "r") as f:
        data = yaml.safe_load(f) or {}

    # Accept both a bare mapping and one nested under "calibration"
    data = data.get("calibration", data)
    merged = config_module.merge_config(config["calibration"], data)
    return CalibrationInput.from_config(merged)


def calibration_square_world(calibration_input: CalibrationInput) -> List[Vector3]:
    """World positions of the calibration square corners (tl, tr, bl, br)."""
    axes = calibration_input.axes
    inverted = calibration_input.inverted.for_axes(axes)
    first = -calibration_input.scale if inverted.is_inverted(axes.first) else calibration_input.scale
    second = -calibration_input.scale if inverted.is_inverted(axes.second) else calibration_input.scale

    corners = []
    for u, v in ((0, 0), (1, 0), (0, 1), (1, 1)):
        coords = [0.0, 0.0, 0.0]
        coords[axes.first] = u * first
        coords[axes.second] = v * second
        corners.append(Vector3(*coords))
    return corners


def vector_to_list(vector) -> Optional[List[float]]:
    if not vector.valid:
        return None
    if isinstance(vector, Vector2):
        return [vector.x, vector.y]
    return [vector.x, vector.y, vector.z]


def run_calibration(calibration_path: str, config_path: Optional[str] = None) -> Dict:
    """Calibrate and build the report.

    Args:
        calibration_path: Path to calibration file
        config_path: Path to configuration file

    Returns:
        Dictionary describing the calibrated camera
    """
    config = config_module.load_config(config_path)

    log_file = config["logging"].get("file")
    if log_file:
        file_handler = logging.FileHandler(log_file)
        file_handler.setFormatter(logging.Formatter("[%(asctime)s] [%(levelname)s] [%(name)s] %(message)s"))
        logging.getLogger().addHandler(file_handler)
    logging.getLogger().setLevel(config["logging"].get("level", "INFO"))

    calibration_input = load_calibration(calibration_path, config)
    logger.info(
        f"Calibrating {calibration_input.image_width}x{calibration_input.image_height} image "
        f"with axes {calibration_input.axes.value}"
    )

    camera = CalibrationSolver().solve(calibration_input)
    report = {
        "valid": camera.valid,
        "reason": camera.reason,
        "image_width": camera.image_width,
        "image_height": camera.image_height,
    }
    if not camera.valid:
        logger.error(f"Calibration failed: {camera.reason}")
        return report

    frustum = ViewFrustum(camera)
    origin = Vector3(0.0, 0.0, 0.0)
    world_corners = calibration_square_world(calibration_input)
    rmse = calibration.reprojection_rmse(camera, world_corners, calibration_input.corners)

    report.update({
        "focal_length": camera.focal_length,
        "camera_center": vector_to_list(camera.camera_center),
        "projected_axes": {
            name: vector_to_list(camera.world_to_screen(axis))
            for name, axis in (
                ("origin", origin),
                ("x", Vector3(1.0, 0.0, 0.0)),
                ("y", Vector3(0.0, 1.0, 0.0)),
                ("z", Vector3(0.0, 0.0, 1.0)),
            )
        },
        "frustum": {
            "valid": frustum.valid,
            "origin_inside": frustum.is_vector_inside(origin),
        },
        "corner_rmse": rmse,
    })
    logger.info(f"Corner reprojection RMSE: {rmse:.6f}px")
    return report


def main():
    """Main function to parse arguments and run the calibration."""
    parser = argparse.ArgumentParser(description="Single-Image Calibration")
    parser.add_argument(
        "--calibration", "-i", dest="calibration_path", required=True,
        help="Path to calibration file (image size and square corners)"
    )
    parser.add_argument(
        "--output", "-o", dest="output_path", default=None,
        help="Path to JSON report (printed when omitted)"
    )
    parser.add_argument(
        "--config", "-c", dest="config_path", default=None,
        help="Path to configuration file"
    )

    args = parser.parse_args()

    try:
        report = run_calibration(args.calibration_path, args.config_path)
    except Exception as e:
        logger.exception(f"Error running calibration: {e}")
        sys.exit(1)

    if args.output_path:
        with open(args.output_path, "w") as f:
            json.dump(report, f, indent=2)
        logger.info(f"Report written to {args.output_path}")
    else:
        print(json.dumps(report, indent=2))

    if not report["valid"]:
        sys.exit(1)


if __name__ == "__main__":
    main()
