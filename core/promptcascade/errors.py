"""
Error taxonomy for prompt execution, post actions and cascades.

Validation errors are raised before any store write. Tracing and cost
recording never raise (see runtime.tracing). Cascade failures are collected
per node instead of being raised.
"""

from typing import Any


class CascadeEngineError(Exception):
    """Base class for every error raised by promptcascade."""

    pass


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------


class ValidationError(CascadeEngineError):
    """Configuration or response shape is unusable. Nothing was written."""

    pass


class ResponseParseError(ValidationError):
    """Model output could not be parsed as JSON."""

    def __init__(self, message: str, raw_response: str = ""):
        super().__init__(message)
        self.raw_response = raw_response


class ActionValidationError(ValidationError):
    """A response failed validation against a child creation strategy."""

    def __init__(self, result: Any):
        super().__init__(result.error or "Response validation failed")
        self.result = result

    @property
    def available_arrays(self) -> list[str]:
        return list(self.result.available_arrays)


# ---------------------------------------------------------------------------
# Run lifecycle
# ---------------------------------------------------------------------------


class AlreadyRunning(CascadeEngineError):
    """The node already has a run in flight."""

    def __init__(self, node_id: str):
        super().__init__(f"Node {node_id} is already running")
        self.node_id = node_id


class FlushError(CascadeEngineError):
    """Pending local edits could not be saved before the run."""

    pass


class ModelError(CascadeEngineError):
    """The model backend failed (network, provider, timeout)."""

    pass


class TooManyQuestions(CascadeEngineError):
    """The model kept asking questions past the allowed number of attempts."""

    def __init__(self, attempts: int):
        super().__init__(f"Model asked questions on all {attempts} attempts")
        self.attempts = attempts


class PartialMaterializationError(CascadeEngineError):
    """Child creation stopped part way. Already created nodes are kept."""

    def __init__(self, created_count: int, error: BaseException):
        super().__init__(f"Created {created_count} node(s) before failing: {error}")
        self.created_count = created_count
        self.error = error


# ---------------------------------------------------------------------------
# Store / ordering
# ---------------------------------------------------------------------------


class StoreError(CascadeEngineError):
    """Tree store failure."""

    pass


class StoreConflict(StoreError):
    """A sibling already holds the requested position key."""

    def __init__(self, parent_id: str | None, position_key: str):
        super().__init__(f"Position key {position_key!r} already used under parent {parent_id!r}")
        self.parent_id = parent_id
        self.position_key = position_key


class NodeNotFound(StoreError):
    def __init__(self, node_id: str):
        super().__init__(f"Node not found: {node_id}")
        self.node_id = node_id


class PositionKeyError(CascadeEngineError, ValueError):
    """No key can be generated for the requested bounds."""

    pass
