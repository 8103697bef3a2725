"""
Error kinds raised by the two-stage pipeline.

`InvalidInput` and `InvalidState` also subclass the builtin exception a caller
would expect (ValueError / RuntimeError), so existing `except ValueError`
handlers keep working.
"""

from __future__ import annotations


class TwoStageError(Exception):
    """Base class for all pipeline errors."""

    kind = "error"


class InvalidInput(TwoStageError, ValueError):
    """Zero/negative dimensions, malformed images, tensors or transforms."""

    kind = "invalid_input"


class InvalidState(TwoStageError, RuntimeError):
    """An object reached a stage in a state it cannot be used from (e.g. scale <= 0)."""

    kind = "invalid_state"


class DecodeFailure(TwoStageError):
    """Buffer conversion or resize failed."""

    kind = "decode_failure"


class EmptyRegion(TwoStageError):
    """The crop rectangle is degenerate or lies entirely outside the image."""

    kind = "empty_region"


class InferenceFailure(TwoStageError):
    """An external engine raised, returned malformed output, or timed out."""

    kind = "inference_failure"
