"""Errors raised by the import pipeline.

Row-level problems never raise: they end up on the row itself. These
exceptions are for whole-operation failures reported to the caller.
"""


class ImportPipelineError(ValueError):
    """Base class for import failures surfaced to the caller."""


class ImportFileError(ImportPipelineError):
    """The uploaded file cannot be decoded into headers and rows."""


class ImportMappingError(ImportPipelineError):
    """The column mapping references unknown fields or misses required ones."""

    def __init__(self, message, missing=None, unknown=None):
        super().__init__(message)
        self.missing = list(missing or [])
        self.unknown = list(unknown or [])


class ImportJobStateError(ImportPipelineError):
    """The operation is not allowed in the job's current state."""


class ImportJobAborted(ImportPipelineError):
    """Apply stopped on a job-level failure; the job is now in ``error``."""


class ImportRollbackFailed(ImportPipelineError):
    """Rollback failed and was reverted; no row or product was changed."""


class RowApplicationError(Exception):
    """A valid row could not be applied (no match, conflicting reference...)."""
