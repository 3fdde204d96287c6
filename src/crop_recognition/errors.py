"""Pipeline error hierarchy.

Per-request failures (DecodeError, ShapeError, InferenceError) are recovered
at the request boundary and reported to the caller. ModelLoadError is raised
only while the service is starting and must stop it from serving.
"""


class PipelineError(Exception):
    """Base class for every error raised by the inference pipeline."""


class DecodeError(PipelineError):
    """Image bytes are empty, malformed, truncated, unsupported or too large."""


class ShapeError(PipelineError):
    """Image or tensor dimensions are degenerate or inconsistent."""


class InferenceError(PipelineError):
    """A forward pass could not be executed or its output could not be read."""


class ModelLoadError(PipelineError):
    """The model is missing, corrupt or cannot run on this runtime."""
