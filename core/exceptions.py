"""Common exception classes for the core package.

This module centralises shared exception definitions for the workspace
pipeline so that stores, workers, and services raise a consistent set of
errors. Additional core-level exceptions should be added here rather than
redefining them in individual modules.

All exceptions ultimately inherit from :class:`WorkbenchError`, allowing
callers to catch a single base class for any pipeline failure while still
distinguishing individual error categories when needed.

Updates:
  v0.3.1 - 2026-10-19 - Drop unused lease error; contention returns False from acquire().
  v0.3.0 - 2026-10-19 - Add keyword/tag validation errors for the workbench service.
  v0.2.0 - 2026-10-19 - Add queue, lease, and transient store errors.
  v0.1.0 - 2026-10-19 - Created module with workspace errors.
"""

from __future__ import annotations


class WorkbenchError(Exception):
    """Base exception for prompt workbench failures."""


# ---------------------------------------------------------------------------
# Fast store errors
# ---------------------------------------------------------------------------


class WorkspaceNotFoundError(WorkbenchError):
    """Raised when a workspace session is missing or has expired."""


class TransientStoreError(WorkbenchError):
    """Raised when the fast key-value store cannot be reached."""


class QueueEmpty(WorkbenchError):
    """Raised when a blocking queue pop times out without a task."""


class MalformedEntryError(WorkbenchError):
    """Raised when a stored entry cannot be decoded."""


# ---------------------------------------------------------------------------
# Validation errors
# ---------------------------------------------------------------------------


class PromptValidationError(WorkbenchError):
    """Base class for rejected workbench input."""


class PublishValidationError(PromptValidationError):
    """Raised when a publish request lacks topic, body, or model."""


class KeywordLimitError(PromptValidationError):
    """Raised when a keyword list would exceed its configured limit."""


class DuplicateKeywordError(PromptValidationError):
    """Raised when a manual keyword already exists in the workspace."""


class TagLimitError(PromptValidationError):
    """Raised when more tags are supplied than allowed."""


# ---------------------------------------------------------------------------
# Collaborator errors
# ---------------------------------------------------------------------------


class ModelInvocationError(WorkbenchError):
    """Raised when the LLM call fails or returns unusable content."""


class WorkbenchServiceError(WorkbenchError):
    """Raised when a workbench operation cannot be completed."""


__all__ = [
    "DuplicateKeywordError",
    "KeywordLimitError",
    "MalformedEntryError",
    "ModelInvocationError",
    "PromptValidationError",
    "PublishValidationError",
    "QueueEmpty",
    "TagLimitError",
    "TransientStoreError",
    "WorkbenchError",
    "WorkbenchServiceError",
    "WorkspaceNotFoundError",
]
