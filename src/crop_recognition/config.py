"""
Pipeline Configuration Module

This module provides a Python interface to pipeline.yaml, the single source
of truth for preprocessing, decoding and suppression parameters.

Usage:
    from crop_recognition.config import get_config, get_section, get_pipeline_config

    # Raw YAML dictionary
    config = get_config()

    # One section
    thresholds = get_section("thresholds")

    # Validated, typed view used by the pipeline
    pipeline_config = get_pipeline_config()

The file location defaults to pipeline.yaml at the repository root and can be
overridden with the PIPELINE_CONFIG environment variable.
"""

import os
from dataclasses import dataclass, field
from functools import lru_cache
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

import yaml


# =============================================================================
# Constants
# =============================================================================

# Structure: src/crop_recognition/config.py -> ../../pipeline.yaml
_CONFIG_PATH = Path(__file__).parent.parent.parent / "pipeline.yaml"

CONFIG_ENV_VAR = "PIPELINE_CONFIG"

NORMALIZATIONS = ("unit", "imagenet")
TASKS = ("auto", "classify", "detect")
SCORE_ACTIVATIONS = ("auto", "none", "softmax", "sigmoid")

REQUIRED_SECTIONS = ("model", "thresholds", "limits", "onnx_runtime")


# =============================================================================
# Configuration Loading
# =============================================================================

def resolve_config_path(path: Optional[str] = None) -> Path:
    """
    Resolve the configuration file location.

    Precedence: explicit argument, PIPELINE_CONFIG environment variable,
    pipeline.yaml at the repository root.
    """
    if path:
        return Path(path)
    env_path = os.environ.get(CONFIG_ENV_VAR)
    if env_path:
        return Path(env_path)
    return _CONFIG_PATH


@lru_cache(maxsize=4)
def _load(path: Path) -> Dict[str, Any]:
    if not path.exists():
        raise FileNotFoundError(
            f"Pipeline configuration not found: {path}\n"
            f"Expected location: {path.absolute()}"
        )

    with open(path, "r", encoding="utf-8") as f:
        data = yaml.safe_load(f)

    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValueError(f"Pipeline configuration must be a mapping: {path}")
    return data


def get_config(path: Optional[str] = None) -> Dict[str, Any]:
    """
    Load and cache the pipeline configuration.

    Args:
        path: Optional explicit path to a YAML file

    Returns:
        Complete configuration dictionary

    Raises:
        FileNotFoundError: If the configuration file does not exist
        yaml.YAMLError: If YAML parsing fails
        ValueError: If the document is not a mapping

    Example:
        >>> config = get_config()
        >>> config["thresholds"]["iou"]
        0.45
    """
    return _load(resolve_config_path(path))


def reload_config(path: Optional[str] = None) -> Dict[str, Any]:
    """
    Force reload of configuration (clears cache).

    Returns:
        Freshly loaded configuration dictionary
    """
    _load.cache_clear()
    return get_config(path)


def get_section(section: str, path: Optional[str] = None) -> Dict[str, Any]:
    """
    Get one top-level section of the configuration.

    Args:
        section: Section name (e.g., "model", "thresholds")
        path: Optional explicit path to a YAML file

    Returns:
        Dictionary of all keys in the section

    Raises:
        KeyError: If the section is not present

    Example:
        >>> get_section("thresholds")["confidence"]
        0.25
    """
    config = get_config(path)

    if section not in config:
        available = list(config.keys())
        raise KeyError(
            f"Section '{section}' not found. Available: {available}"
        )

    return config[section] or {}


# =============================================================================
# Typed Pipeline Configuration
# =============================================================================

@dataclass(frozen=True)
class PipelineConfig:
    """
    Validated pipeline parameters, fixed for the lifetime of the process.

    Attributes:
        input_size: (width, height) fallback when the model input is dynamic
        normalization: "unit" (x / 255) or "imagenet" (mean/std)
        fill_value: Letterbox padding gray level
        task: "auto", "classify" or "detect"
        score_activation: "auto", "none", "softmax" or "sigmoid"
        has_objectness: Detection rows carry an objectness column (YOLOv5)
        confidence_threshold: Minimum confidence for a candidate
        iou_threshold: NMS overlap threshold
        class_aware_nms: Suppress only within the same class
        top_k: Classification slots kept before thresholding
        max_detections: Cap on the final prediction count
        max_image_dimension: Largest accepted image width or height
        intra_op_threads: ONNX Runtime intra-op parallelism
        inter_op_threads: ONNX Runtime inter-op parallelism
        providers: ONNX Runtime execution providers
        display_names: Label to localized display name
    """

    input_size: Tuple[int, int] = (224, 224)
    normalization: str = "unit"
    fill_value: int = 114
    task: str = "auto"
    score_activation: str = "auto"
    has_objectness: bool = False
    confidence_threshold: float = 0.25
    iou_threshold: float = 0.45
    class_aware_nms: bool = True
    top_k: int = 1
    max_detections: int = 100
    max_image_dimension: int = 8192
    intra_op_threads: int = 2
    inter_op_threads: int = 1
    providers: Tuple[str, ...] = ("CPUExecutionProvider",)
    display_names: Dict[str, str] = field(default_factory=dict)

    def __post_init__(self) -> None:
        errors = _validate_values(self)
        if errors:
            raise ValueError("Invalid pipeline configuration: " + "; ".join(errors))

    @classmethod
    def from_dict(cls, config: Dict[str, Any]) -> "PipelineConfig":
        """
        Build a PipelineConfig from the raw YAML dictionary.

        Missing keys fall back to the dataclass defaults.
        """
        model = config.get("model") or {}
        thresholds = config.get("thresholds") or {}
        limits = config.get("limits") or {}
        onnx = config.get("onnx_runtime") or {}

        kwargs: Dict[str, Any] = {}

        if "input_size" in model:
            size = model["input_size"]
            if isinstance(size, int):
                size = (size, size)
            kwargs["input_size"] = tuple(int(v) for v in size)

        for key in ("normalization", "task", "score_activation"):
            if key in model:
                kwargs[key] = str(model[key]).lower()
        if "fill_value" in model:
            kwargs["fill_value"] = int(model["fill_value"])
        if "has_objectness" in model:
            kwargs["has_objectness"] = bool(model["has_objectness"])

        mapping = {
            "confidence": ("confidence_threshold", float),
            "iou": ("iou_threshold", float),
            "class_aware_nms": ("class_aware_nms", bool),
            "top_k": ("top_k", int),
            "max_detections": ("max_detections", int),
        }
        for key, (name, cast) in mapping.items():
            if key in thresholds:
                kwargs[name] = cast(thresholds[key])

        if "max_image_dimension" in limits:
            kwargs["max_image_dimension"] = int(limits["max_image_dimension"])

        if "intra_op_num_threads" in onnx:
            kwargs["intra_op_threads"] = int(onnx["intra_op_num_threads"])
        if "inter_op_num_threads" in onnx:
            kwargs["inter_op_threads"] = int(onnx["inter_op_num_threads"])
        if "providers" in onnx:
            kwargs["providers"] = tuple(onnx["providers"])

        display_names = config.get("display_names") or {}
        kwargs["display_names"] = {str(k): str(v) for k, v in display_names.items()}

        return cls(**kwargs)


def get_pipeline_config(path: Optional[str] = None) -> PipelineConfig:
    """
    Load the YAML configuration and return the validated typed view.

    Raises:
        ValueError: If any value is out of range or not recognised
    """
    return PipelineConfig.from_dict(get_config(path))


# =============================================================================
# Validation
# =============================================================================

def _validate_values(config: PipelineConfig) -> List[str]:
    errors = []

    if len(config.input_size) != 2 or min(config.input_size) <= 0:
        errors.append(f"input_size must be two positive integers, got {config.input_size}")
    if config.normalization not in NORMALIZATIONS:
        errors.append(f"normalization must be one of {NORMALIZATIONS}, got '{config.normalization}'")
    if config.task not in TASKS:
        errors.append(f"task must be one of {TASKS}, got '{config.task}'")
    if config.score_activation not in SCORE_ACTIVATIONS:
        errors.append(
            f"score_activation must be one of {SCORE_ACTIVATIONS}, got '{config.score_activation}'"
        )
    if not 0 <= config.fill_value <= 255:
        errors.append(f"fill_value must be in [0, 255], got {config.fill_value}")
    if not 0.0 <= config.confidence_threshold <= 1.0:
        errors.append(f"confidence threshold must be in [0, 1], got {config.confidence_threshold}")
    if not 0.0 <= config.iou_threshold <= 1.0:
        errors.append(f"iou threshold must be in [0, 1], got {config.iou_threshold}")
    if config.top_k < 1:
        errors.append(f"top_k must be >= 1, got {config.top_k}")
    if config.max_detections < 1:
        errors.append(f"max_detections must be >= 1, got {config.max_detections}")
    if config.max_image_dimension < 1:
        errors.append(f"max_image_dimension must be >= 1, got {config.max_image_dimension}")
    if config.intra_op_threads < 0 or config.inter_op_threads < 0:
        errors.append("onnx_runtime thread counts must be >= 0")
    if not config.providers:
        errors.append("at least one execution provider is required")

    return errors


def validate_config(path: Optional[str] = None) -> List[str]:
    """
    Validate the pipeline configuration file.

    Returns:
        List of validation error messages (empty if valid)

    Example:
        >>> errors = validate_config()
        >>> if errors:
        ...     print("Validation failed:", errors)
    """
    try:
        config = get_config(path)
    except (FileNotFoundError, ValueError, yaml.YAMLError) as e:
        return [f"Failed to load config: {e}"]

    errors = []
    for section in REQUIRED_SECTIONS:
        if section not in config:
            errors.append(f"Missing required section: {section}")

    try:
        PipelineConfig.from_dict(config)
    except (TypeError, ValueError) as e:
        errors.append(str(e))

    return errors
