import math
import logging
import numpy as np
from enum import Enum
from numpy.typing import NDArray
from typing import Dict, FrozenSet, List, Optional, Sequence, Tuple, Union

from .camera import Camera
from .types import (
    CameraModel,
    CameraModelType,
    FISHEYE_MODELS,
    PERSPECTIVE_MODELS,
    SINK_MODELS,
    resolve_model,
)

logger = logging.getLogger(__name__)

# Parameters whose magnitude is below this are treated as zero when dropped
DEFAULT_THRESHOLD = 1e-6

# Relative fx/fy difference above which a single focal length is the mean of both
ASPECT_RATIO_THRESHOLD = 0.01

# FOV omega (radians) below which the Taylor link is rated good / rough
FOV_GOOD_OMEGA = 0.1
FOV_ROUGH_OMEGA = 0.5

ModelLike = Union[str, int, CameraModelType, CameraModel]

_SP = CameraModelType.SIMPLE_PINHOLE
_P = CameraModelType.PINHOLE
_SR = CameraModelType.SIMPLE_RADIAL
_R = CameraModelType.RADIAL
_OCV = CameraModelType.OPENCV
_FOV = CameraModelType.FOV
_SRF = CameraModelType.SIMPLE_RADIAL_FISHEYE
_RF = CameraModelType.RADIAL_FISHEYE
_OCVF = CameraModelType.OPENCV_FISHEYE
_TPF = CameraModelType.THIN_PRISM_FISHEYE

# Adding zero-valued parameters reproduces the source model exactly
EXPANSIONS: FrozenSet[Tuple[CameraModelType, CameraModelType]] = frozenset([
    (_SP, _P), (_SP, _SR), (_SP, _R), (_SP, _OCV),
    (_P, _SR), (_P, _R), (_P, _OCV),
    (_SR, _R), (_SR, _OCV),
    (_R, _OCV),
    (_SRF, _RF), (_SRF, _OCVF), (_SRF, _TPF),
    (_RF, _OCVF), (_RF, _TPF),
    (_OCVF, _TPF),
])

# Dropping parameters is exact only when the dropped values are negligible
REDUCTIONS: FrozenSet[Tuple[CameraModelType, CameraModelType]] = frozenset([
    (_P, _SP),
    (_R, _SR),
    (_OCV, _R), (_OCV, _SR),
    (_RF, _SRF),
    (_OCVF, _RF), (_OCVF, _SRF),
    (_TPF, _OCVF), (_TPF, _RF), (_TPF, _SRF),
])

# Models linked to FOV through the Taylor expansion of its distortion
FOV_PARTNERS = frozenset([_SR, _R])

# Models that can be approximately converted into a sink model
SINK_SOURCES = frozenset([_SP, _P, _SR, _R, _OCV])

SINK_FORMULAS = {
    CameraModelType.FULL_OPENCV: "rational polynomial formula",
    CameraModelType.RAD_TAN_THIN_PRISM_FISHEYE: "radial-tangential thin prism formula",
}

# Parameters that disappear together, with the label used in messages
_DROP_GROUPS = (
    (("k2",), None),
    (("k3", "k4"), None),
    (("p1", "p2"), "tangential"),
    (("sx1", "sy1"), "thin prism"),
)

_CANONICAL_NAMES = {"f": ("fx", "fy"), "k": ("k1",)}


class Compatibility(Enum):
    """How well one camera model can represent another."""
    EXACT = "exact"
    APPROXIMATE = "approximate"
    INCOMPATIBLE = "incompatible"


class Characterization(Enum):
    """Nature of a conversion as shown in a preview."""
    EXACT = "exact"
    EXPANSION = "expansion"
    LOSSY = "lossy"
    APPROXIMATION = "approximation"


class ConversionResult:
    """
    Outcome of a camera model conversion. Exactly one of ExactConversion,
    ApproximateConversion or IncompatibleConversion; callers branch on
    `compatibility` (or isinstance) instead of catching exceptions.
    """

    __slots__ = ()

    compatibility: Compatibility

    @property
    def is_compatible(self) -> bool:
        return self.compatibility is not Compatibility.INCOMPATIBLE


class ExactConversion(ConversionResult):
    """The target parameters describe the same projection as the source."""

    __slots__ = ['params']

    compatibility = Compatibility.EXACT
    max_error = 0.0
    warning = None

    def __init__(self, params: Union[NDArray[np.float64], Sequence[float]]):
        self.params = _frozen_params(params)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, ExactConversion):
            return NotImplemented
        return np.array_equal(self.params, other.params)

    __hash__ = None

    def __repr__(self) -> str:
        return f"ExactConversion(params={self.params.tolist()})"


class ApproximateConversion(ConversionResult):
    """
    The target parameters only approximate the source projection.

    Attributes:
        params: Target model parameters.
        max_error: Estimate of the largest discrepancy introduced. Its unit
                   depends on what was dropped (coefficient magnitude or pixels).
        warning: Human-readable description of what was lost.
    """

    __slots__ = ['params', 'max_error', 'warning']

    compatibility = Compatibility.APPROXIMATE

    def __init__(self, params: Union[NDArray[np.float64], Sequence[float]], max_error: float, warning: str):
        self.params = _frozen_params(params)
        self.max_error = float(max_error)
        self.warning = warning

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, ApproximateConversion):
            return NotImplemented
        return np.array_equal(self.params, other.params) and \
               self.max_error == other.max_error and \
               self.warning == other.warning

    __hash__ = None

    def __repr__(self) -> str:
        return (f"ApproximateConversion(params={self.params.tolist()}, "
                f"max_error={self.max_error:.3g}, warning='{self.warning}')")


class IncompatibleConversion(ConversionResult):
    """The target model cannot represent the source camera."""

    __slots__ = ['reason']

    compatibility = Compatibility.INCOMPATIBLE
    params = None

    def __init__(self, reason: str):
        self.reason = reason

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, IncompatibleConversion):
            return NotImplemented
        return self.reason == other.reason

    __hash__ = None

    def __repr__(self) -> str:
        return f"IncompatibleConversion(reason='{self.reason}')"


class ConversionPreview:
    """Side-by-side view of a conversion, for showing before it is applied."""

    __slots__ = ['source_param_names', 'source_params', 'target_param_names', 'target_params',
                 'characterization', 'is_lossy', 'is_expansion', 'description', 'warning']

    def __init__(self, source_param_names: Tuple[str, ...], source_params: NDArray[np.float64],
                 target_param_names: Tuple[str, ...], target_params: NDArray[np.float64],
                 characterization: Characterization, is_lossy: bool, is_expansion: bool,
                 description: str, warning: Optional[str] = None):
        self.source_param_names = source_param_names
        self.source_params = source_params
        self.target_param_names = target_param_names
        self.target_params = target_params
        self.characterization = characterization
        self.is_lossy = is_lossy
        self.is_expansion = is_expansion
        self.description = description
        self.warning = warning

    def __repr__(self) -> str:
        return (f"ConversionPreview({self.characterization.value}, lossy={self.is_lossy}, "
                f"expansion={self.is_expansion}, description='{self.description}')")


def _frozen_params(params) -> NDArray[np.float64]:
    array = np.array(params, dtype=np.float64).reshape(-1)
    array.setflags(write=False)
    return array


def _model_type(model: ModelLike) -> CameraModelType:
    return CameraModelType(resolve_model(model).model_id)


def _model_name(model_type: CameraModelType) -> str:
    return resolve_model(model_type).model_name


def _canonical_names(model: CameraModel) -> FrozenSet[str]:
    names = set()
    for name in model.param_names:
        names.update(_CANONICAL_NAMES.get(name, (name,)))
    return frozenset(names)


def _crosses_families(source: CameraModelType, target: CameraModelType) -> bool:
    return (source in PERSPECTIVE_MODELS and target in FISHEYE_MODELS) or \
           (source in FISHEYE_MODELS and target in PERSPECTIVE_MODELS)


def _format_values(names: Sequence[str], values: Sequence[float]) -> str:
    return ", ".join(f"{name}={value:.3e}" for name, value in zip(names, values))


def can_convert(from_model: ModelLike, to_model: ModelLike) -> Compatibility:
    """
    Classifies a pair of camera models, independent of any parameter values.

    Precedence: same model, cross-family exclusion, sink models, FOV links,
    then the fixed expansion and reduction lists.
    """
    source = _model_type(from_model)
    target = _model_type(to_model)

    if source == target:
        return Compatibility.EXACT
    if _crosses_families(source, target):
        return Compatibility.INCOMPATIBLE

    if source in SINK_MODELS:
        return Compatibility.INCOMPATIBLE
    if target in SINK_MODELS:
        return Compatibility.APPROXIMATE if source in SINK_SOURCES else Compatibility.INCOMPATIBLE

    if source == _FOV or target == _FOV:
        other = target if source == _FOV else source
        return Compatibility.APPROXIMATE if other in FOV_PARTNERS else Compatibility.INCOMPATIBLE

    if (source, target) in EXPANSIONS:
        return Compatibility.EXACT
    if (source, target) in REDUCTIONS:
        return Compatibility.APPROXIMATE
    return Compatibility.INCOMPATIBLE


def get_valid_target_models(model: ModelLike) -> List[Tuple[CameraModelType, Compatibility]]:
    """All other models the given one can be converted to, with their compatibility."""
    source = _model_type(model)
    targets = []
    for target in CameraModelType:
        if target == source:
            continue
        compatibility = can_convert(source, target)
        if compatibility is not Compatibility.INCOMPATIBLE:
            targets.append((target, compatibility))
    return targets


def _incompatibility_reason(source: CameraModelType, target: CameraModelType) -> str:
    source_name = _model_name(source)
    target_name = _model_name(target)

    if source in PERSPECTIVE_MODELS and target in FISHEYE_MODELS:
        return f"Cannot convert {source_name} (perspective) to {target_name} (fisheye): different projection models"
    if source in FISHEYE_MODELS and target in PERSPECTIVE_MODELS:
        return f"Cannot convert {source_name} (fisheye) to {target_name} (perspective): different projection models"
    if source in SINK_MODELS:
        return f"Cannot convert from {source_name}: {SINK_FORMULAS[source]} has no equivalent in other models"
    if target in SINK_MODELS:
        return (f"Cannot convert {source_name} to {target_name}: "
                f"only perspective pinhole/radial models can be approximately converted")
    return f"No valid conversion path from {source_name} to {target_name}"


def _dropped_groups(source: CameraModel, target: CameraModel, intrinsics: Dict[str, float],
                    threshold: float):
    """Yields (names, label, values, significant) for each parameter group the target lacks."""
    source_names = _canonical_names(source)
    target_names = _canonical_names(target)
    for group, label in _DROP_GROUPS:
        names = [name for name in group if name in source_names]
        if not any(name not in target_names for name in names):
            continue
        values = [intrinsics[name] for name in names]
        significant = any(abs(value) > threshold for value in values)
        yield names, label, values, significant


def _aspect_difference(intrinsics: Dict[str, float]) -> float:
    fx, fy = intrinsics["fx"], intrinsics["fy"]
    if fx == 0.0:
        return 0.0 if fy == 0.0 else math.inf
    return abs(fx - fy) / abs(fx)


def _merges_focal(source: CameraModel, target: CameraModel) -> bool:
    return "fx" in source.param_names and "f" in target.param_names


def _resolve_focal(source: CameraModel, target: CameraModel,
                   intrinsics: Dict[str, float]) -> Tuple[float, Optional[str], float]:
    """
    Focal length for the target's `f` parameter.

    Returns:
        (f, warning or None, error estimate in pixels)
    """
    fx, fy = intrinsics["fx"], intrinsics["fy"]
    if not _merges_focal(source, target):
        return fx, None, 0.0

    aspect_diff = _aspect_difference(intrinsics)
    if aspect_diff <= ASPECT_RATIO_THRESHOLD:
        return fx, None, 0.0

    f_mean = (fx + fy) / 2.0
    error = abs(fx - f_mean) / f_mean * max(intrinsics["cx"], intrinsics["cy"])
    warning = f"Using mean f={f_mean:.2f} (fx={fx:.2f}, fy={fy:.2f}, diff {aspect_diff * 100:.2f}%)"
    return f_mean, warning, error


def _assemble_params(target: CameraModel, values: Dict[str, float], focal: float) -> List[float]:
    params = []
    for name in target.param_names:
        if name == "f":
            params.append(focal)
        else:
            params.append(values.get(_CANONICAL_NAMES.get(name, (name,))[0], 0.0))
    return params


def _convert_by_name(source: CameraModel, target: CameraModel, intrinsics: Dict[str, float],
                     threshold: float) -> ConversionResult:
    """Expansions and reductions: parameters are matched by name, missing ones are zero."""
    warnings = []
    max_error = 0.0

    for names, label, values, significant in _dropped_groups(source, target, intrinsics, threshold):
        if not significant:
            continue
        prefix = f"{label}: " if label else ""
        warnings.append(f"Dropping {prefix}{_format_values(names, values)}")
        max_error = max(max_error, max(abs(value) for value in values))

    focal, focal_warning, focal_error = _resolve_focal(source, target, intrinsics)
    if focal_warning:
        warnings.append(focal_warning)
        max_error = max(max_error, focal_error)

    params = _assemble_params(target, intrinsics, focal)
    if warnings:
        return ApproximateConversion(params, max_error, "; ".join(warnings))
    return ExactConversion(params)


def _convert_from_fov(source: CameraModel, target: CameraModel,
                      intrinsics: Dict[str, float]) -> ConversionResult:
    omega = intrinsics["omega"]
    values = dict(intrinsics)
    # Taylor expansion of the FOV distortion: k1 ~ omega^2 / 3
    values["k1"] = omega * omega / 3.0

    if omega < FOV_GOOD_OMEGA:
        quality, max_error = "good", 0.01
    elif omega < FOV_ROUGH_OMEGA:
        quality, max_error = "rough", 0.1
    else:
        quality, max_error = "poor", 0.5
    warning = f"Taylor approximation ({quality}); omega={omega:.4f} radians ({math.degrees(omega):.1f}°)"

    # fx becomes the single focal length; fy is not averaged in
    return ApproximateConversion(_assemble_params(target, values, intrinsics["fx"]), max_error, warning)


def _convert_to_fov(source: CameraModel, target: CameraModel, intrinsics: Dict[str, float],
                    threshold: float) -> ConversionResult:
    k1 = intrinsics["k1"]
    if abs(intrinsics["k2"]) > threshold:
        return IncompatibleConversion("FOV model cannot represent k2 distortion")
    if k1 <= 0:
        k_name = "k" if "k" in source.param_names else "k1"
        return IncompatibleConversion(f"FOV model requires positive distortion ({k_name} > 0)")

    omega = math.sqrt(3.0 * k1)
    values = dict(intrinsics)
    values["omega"] = omega
    max_error = 0.1 if omega > FOV_GOOD_OMEGA else 0.01
    return ApproximateConversion(_assemble_params(target, values, intrinsics["fx"]), max_error,
                                 f"Taylor approximation; omega={omega:.4f} radians")


def _convert_to_sink(target_type: CameraModelType, target: CameraModel,
                     intrinsics: Dict[str, float]) -> ConversionResult:
    # Always approximate, with a zero error bound
    warning = f"{target.model_name} uses {SINK_FORMULAS[target_type]}; behavior differs from simpler models"
    return ApproximateConversion(_assemble_params(target, intrinsics, intrinsics["fx"]), 0.0, warning)


def convert_camera_model(camera: Camera, target_model: ModelLike,
                         threshold: float = DEFAULT_THRESHOLD) -> ConversionResult:
    """
    Converts a camera's parameters to another camera model.

    Args:
        camera: Source camera.
        target_model: Target model name, id or CameraModelType.
        threshold: Magnitude below which a dropped parameter counts as zero.

    Returns:
        ExactConversion, ApproximateConversion (with max_error and warning) or
        IncompatibleConversion (with the reason). Incompatibility is never raised.

    Raises:
        ValueError: If the target model is unknown.
    """
    source_type = camera.model_type
    target_type = _model_type(target_model)
    if source_type == target_type:
        return ExactConversion(camera.params)

    if can_convert(source_type, target_type) is Compatibility.INCOMPATIBLE:
        return IncompatibleConversion(_incompatibility_reason(source_type, target_type))

    source = camera.camera_model
    target = resolve_model(target_type)
    intrinsics = camera.get_intrinsics()

    if target_type in SINK_MODELS:
        result = _convert_to_sink(target_type, target, intrinsics)
    elif source_type == _FOV:
        result = _convert_from_fov(source, target, intrinsics)
    elif target_type == _FOV:
        result = _convert_to_fov(source, target, intrinsics, threshold)
    else:
        result = _convert_by_name(source, target, intrinsics, threshold)

    logger.debug("Camera %d %s -> %s: %s", camera.id, source.model_name, target.model_name,
                 result.compatibility.value)
    return result


def create_converted_camera(camera: Camera, target_model: ModelLike,
                            threshold: float = DEFAULT_THRESHOLD) -> Optional[Camera]:
    """Returns a new Camera in the target model, or None if the conversion is incompatible."""
    result = convert_camera_model(camera, target_model, threshold=threshold)
    if not result.is_compatible:
        return None
    return camera.replace(model=_model_type(target_model), params=result.params)


def _describe_dropped(source: CameraModel, target: CameraModel, intrinsics: Dict[str, float],
                      threshold: float) -> Tuple[bool, str]:
    dropped = []
    has_nonzero = False

    if _merges_focal(source, target):
        aspect_diff = _aspect_difference(intrinsics)
        if aspect_diff > ASPECT_RATIO_THRESHOLD:
            has_nonzero = True
            dropped.append(f"fy (aspect ratio diff: {aspect_diff * 100:.2f}%)")
        else:
            dropped.append("fy (aspect ratio preserved)")

    for names, label, values, significant in _dropped_groups(source, target, intrinsics, threshold):
        if significant:
            has_nonzero = True
            formatted = _format_values(names, values)
            dropped.append(f"{label} ({formatted})" if label else formatted)
        else:
            dropped.append(f"{label or ', '.join(names)} (was zero)")

    description = f"Dropping: {', '.join(dropped)}" if dropped else "Parameter reduction"
    return has_nonzero, description


def _characterize(source_type: CameraModelType, target_type: CameraModelType, source: CameraModel,
                  target: CameraModel, intrinsics: Dict[str, float], result: ConversionResult,
                  threshold: float) -> Tuple[Characterization, bool, bool, str]:
    """Returns (characterization, is_lossy, is_expansion, description)."""
    if source_type == _FOV or target_type == _FOV:
        return (Characterization.APPROXIMATION, True, False,
                "Taylor series approximation between FOV and polynomial models")

    if target_type in SINK_MODELS:
        formula = SINK_FORMULAS[target_type]
        return (Characterization.APPROXIMATION, False, True,
                f"{formula[0].upper()}{formula[1:]} differs from simpler models")

    source_count = source.num_params
    target_count = target.num_params

    if target_count > source_count:
        added = target_count - source_count
        added_zeros = bool(np.all(np.abs(result.params[-added:]) < threshold))
        if result.compatibility is Compatibility.EXACT or added_zeros:
            return (Characterization.EXPANSION, False, True,
                    f"Adding {added} parameter{'s' if added > 1 else ''} (set to zero)")

    if target_count < source_count:
        has_nonzero, description = _describe_dropped(source, target, intrinsics, threshold)
        if has_nonzero:
            return Characterization.LOSSY, True, False, description
        return Characterization.EXACT, False, False, description

    if result.compatibility is Compatibility.APPROXIMATE:
        return Characterization.LOSSY, True, False, "Some parameter information is lost"
    return Characterization.EXACT, False, False, "Equivalent representation"


def get_conversion_preview(camera: Camera, target_model: ModelLike,
                           threshold: float = DEFAULT_THRESHOLD) -> Optional[ConversionPreview]:
    """
    Describes what converting `camera` to `target_model` would do.

    Returns:
        A ConversionPreview, or None if the conversion is incompatible.
    """
    result = convert_camera_model(camera, target_model, threshold=threshold)
    if not result.is_compatible:
        return None

    target_type = _model_type(target_model)
    source = camera.camera_model
    target = resolve_model(target_type)
    characterization, is_lossy, is_expansion, description = _characterize(
        camera.model_type, target_type, source, target, camera.get_intrinsics(), result, threshold)

    return ConversionPreview(
        source_param_names=source.param_names,
        source_params=camera.params.copy(),
        target_param_names=target.param_names,
        target_params=result.params,
        characterization=characterization,
        is_lossy=is_lossy,
        is_expansion=is_expansion,
        description=description,
        warning=result.warning,
    )
