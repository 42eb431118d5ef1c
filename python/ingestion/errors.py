"""
Error Handling - Centralized error policies and custom exceptions.

This module defines how different error types are handled throughout the
ingestion pipeline. Errors local to one file are logged and skipped; only
setup failures (root path, sink) abort a run.
"""

import logging
from enum import Enum, auto
from dataclasses import dataclass
from typing import Optional
from pathlib import Path


logger = logging.getLogger(__name__)

LOG_FORMAT = "[%(levelname)s] %(name)s: %(message)s"


class ErrorAction(Enum):
    """What to do when an error occurs."""
    SKIP = auto()           # Skip this item, continue processing
    ABORT = auto()          # Stop the entire pipeline


@dataclass
class ErrorPolicy:
    """Policy for handling a specific error type."""
    action: ErrorAction
    log_level: int
    message_template: str = "{file}: {error}"


class IndexingError(Exception):
    """Base exception for ingestion errors."""
    pass


class RootPathError(IndexingError):
    """The indexing root is missing, not a directory, or unreadable."""
    def __init__(self, path: Path, reason: str):
        self.path = path
        self.reason = reason
        super().__init__(f"Cannot index {path}: {reason}")


class SinkError(IndexingError):
    """Error talking to the sink."""
    pass


class SinkInitError(SinkError):
    """The sink could not be opened."""
    pass


class UploadError(SinkError):
    """The sink rejected a single file."""
    def __init__(self, path: str, message: str = "upload rejected by sink"):
        self.path = path
        super().__init__(f"{path}: {message}")


# Error type to policy mapping. Order matters: subclasses before OSError.
ERROR_POLICIES: dict[type, ErrorPolicy] = {
    RootPathError: ErrorPolicy(
        action=ErrorAction.ABORT,
        log_level=logging.ERROR,
        message_template="{error}"
    ),
    SinkInitError: ErrorPolicy(
        action=ErrorAction.ABORT,
        log_level=logging.ERROR,
        message_template="Cannot open store: {error}"
    ),
    UploadError: ErrorPolicy(
        action=ErrorAction.SKIP,
        log_level=logging.WARNING,
        message_template="Upload failed: {error}"
    ),
    PermissionError: ErrorPolicy(
        action=ErrorAction.SKIP,
        log_level=logging.DEBUG,
        message_template="Permission denied: {file}"
    ),
    FileNotFoundError: ErrorPolicy(
        action=ErrorAction.SKIP,
        log_level=logging.DEBUG,
        message_template="File not found (possibly deleted): {file}"
    ),
    UnicodeDecodeError: ErrorPolicy(
        action=ErrorAction.SKIP,
        log_level=logging.DEBUG,
        message_template="Cannot decode file (binary?): {file}"
    ),
    IsADirectoryError: ErrorPolicy(
        action=ErrorAction.SKIP,
        log_level=logging.DEBUG,
        message_template="Expected file, got directory: {file}"
    ),
    OSError: ErrorPolicy(
        action=ErrorAction.SKIP,
        log_level=logging.WARNING,
        message_template="OS error reading file: {file} - {error}"
    ),
}


def handle_error(
    error: Exception,
    file_path: Optional[Path | str] = None,
    context: str = ""
) -> ErrorAction:
    """
    Handle an error according to the defined policies.

    Args:
        error: The exception that occurred
        file_path: Path to the file being processed (if applicable)
        context: Additional context for logging

    Returns:
        The action to take (SKIP or ABORT)
    """
    policy = None
    for error_type, p in ERROR_POLICIES.items():
        if isinstance(error, error_type):
            policy = p
            break

    # Default policy for unknown errors
    if policy is None:
        policy = ErrorPolicy(
            action=ErrorAction.SKIP,
            log_level=logging.ERROR,
            message_template="Unexpected error: {file} - {error}"
        )

    file_str = str(file_path) if file_path else "<unknown>"
    message = policy.message_template.format(file=file_str, error=str(error))
    if context:
        message = f"[{context}] {message}"

    logger.log(policy.log_level, message)

    return policy.action


def configure_logging(verbose: bool = False) -> None:
    """Route ingestion logs to stderr; DEBUG when verbose."""
    package_logger = logging.getLogger("ingestion")
    package_logger.setLevel(logging.DEBUG if verbose else logging.INFO)
    if not package_logger.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        package_logger.addHandler(handler)


@dataclass
class ProcessingResult:
    """Result of uploading a single file."""
    success: bool
    path: Optional[str] = None
    error: Optional[Exception] = None
    action_taken: Optional[ErrorAction] = None

    @classmethod
    def ok(cls, path: str) -> "ProcessingResult":
        return cls(success=True, path=path)

    @classmethod
    def failed(cls, path: str, error: Exception, action: ErrorAction) -> "ProcessingResult":
        return cls(success=False, path=path, error=error, action_taken=action)
