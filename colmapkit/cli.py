import os
import sys
import logging
import argparse
from typing import List, Optional

from .reconstruction import Reconstruction
from .io import write_points_ply
from .types import CAMERA_MODEL_NAMES
from .conversion import DEFAULT_THRESHOLD, get_conversion_preview, get_valid_target_models
from .validation import DEFAULT_SAMPLE_COUNT, validate_conversion

logger = logging.getLogger(__name__)

# Statistics that need the point3D ids of each observation, absent from lite images
POINTS2D_STATISTICS = ("mean_valid_observations_per_image",)


def _setup_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        handlers=[logging.StreamHandler(sys.stdout)],
    )


def _load(path: str, lite: bool = False) -> Reconstruction:
    return Reconstruction.load(path, lite=lite)


def cmd_info(args: argparse.Namespace) -> int:
    reconstruction = _load(args.input, lite=True)
    lite = any(not image.has_points2D for image in reconstruction.images.values())
    for name, value in reconstruction.get_statistics().items():
        if lite and name in POINTS2D_STATISTICS:
            print(f"{name}: n/a")
        else:
            print(f"{name}: {value:g}")
    for camera in sorted(reconstruction.cameras.values(), key=lambda c: c.id):
        print(f"camera {camera.id}: {camera.model} {camera.width}x{camera.height}")
    return 0


def cmd_convert_format(args: argparse.Namespace) -> int:
    reconstruction = _load(args.input)
    reconstruction.save(args.output, binary=args.to == "bin")
    return 0


def cmd_targets(args: argparse.Namespace) -> int:
    for model, compatibility in get_valid_target_models(args.model):
        print(f"{model.name}: {compatibility.value}")
    return 0


def cmd_convert_camera(args: argparse.Namespace) -> int:
    reconstruction = _load(args.input)
    if args.camera_id not in reconstruction.cameras:
        logger.error("Camera %d not found in %s", args.camera_id, args.input)
        return 1
    camera = reconstruction.cameras[args.camera_id]

    preview = get_conversion_preview(camera, args.model, threshold=args.threshold)
    converted, result = reconstruction.convert_camera(args.camera_id, args.model, threshold=args.threshold)
    if converted is None:
        logger.error("Cannot convert camera %d: %s", args.camera_id, result.reason)
        return 1

    logger.info("%s -> %s: %s (%s)", camera.model, args.model,
                preview.characterization.value, preview.description)
    if result.warning:
        logger.warning("%s", result.warning)

    report = validate_conversion(camera, converted.cameras[args.camera_id], sample_count=args.samples)
    logger.info("Reprojection error over %d samples: max %.4f px, mean %.4f px",
                report.sample_count, report.max_error, report.avg_error)

    converted.save(args.output, binary=not args.text)
    return 0


def cmd_export_ply(args: argparse.Namespace) -> int:
    reconstruction = _load(args.input, lite=True)
    with open(args.output, "w", encoding="utf-8") as f:
        f.write(write_points_ply(reconstruction.points3D))
    logger.info("Wrote %d points to %s", reconstruction.num_points3D, args.output)
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="colmapkit",
        description="Read, write and convert COLMAP sparse reconstructions.",
    )
    parser.add_argument('--verbose', '-v', action='store_true', help='Enable verbose logging')
    subparsers = parser.add_subparsers(dest="command", required=True)

    info = subparsers.add_parser("info", help="Print reconstruction statistics")
    info.add_argument("input", help="Project or model directory")
    info.set_defaults(func=cmd_info)

    convert_format = subparsers.add_parser("convert-format", help="Rewrite a model as binary or text")
    convert_format.add_argument("input", help="Project or model directory")
    convert_format.add_argument("output", help="Output model directory")
    convert_format.add_argument("--to", choices=["bin", "txt"], default="bin",
                                help="Output format (default: bin)")
    convert_format.set_defaults(func=cmd_convert_format)

    targets = subparsers.add_parser("targets", help="List models a camera model can be converted to")
    targets.add_argument("model", choices=sorted(CAMERA_MODEL_NAMES), help="Source camera model")
    targets.set_defaults(func=cmd_targets)

    convert_camera = subparsers.add_parser("convert-camera", help="Convert one camera to another model")
    convert_camera.add_argument("input", help="Project or model directory")
    convert_camera.add_argument("output", help="Output model directory")
    convert_camera.add_argument("--camera-id", type=int, required=True, help="Camera to convert")
    convert_camera.add_argument("--model", choices=sorted(CAMERA_MODEL_NAMES), required=True,
                                help="Target camera model")
    convert_camera.add_argument("--threshold", type=float, default=DEFAULT_THRESHOLD,
                                help=f"Magnitude below which dropped parameters count as zero "
                                     f"(default: {DEFAULT_THRESHOLD:g})")
    convert_camera.add_argument("--samples", type=int, default=DEFAULT_SAMPLE_COUNT,
                                help=f"Validation grid samples per dimension (default: {DEFAULT_SAMPLE_COUNT})")
    convert_camera.add_argument("--text", action="store_true", help="Write the output model as text")
    convert_camera.set_defaults(func=cmd_convert_camera)

    export_ply = subparsers.add_parser("export-ply", help="Export the 3D points as an ASCII PLY file")
    export_ply.add_argument("input", help="Project or model directory")
    export_ply.add_argument("output", help="Output .ply file")
    export_ply.set_defaults(func=cmd_export_ply)

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    _setup_logging(args.verbose)

    if hasattr(args, "input") and not os.path.isdir(args.input):
        logger.error("Input directory not found: %s", args.input)
        return 1

    try:
        return args.func(args)
    except (FileNotFoundError, ValueError) as e:
        logger.error("%s", e)
        return 1


if __name__ == "__main__":
    sys.exit(main())
