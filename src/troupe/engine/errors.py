# Copyright (c) 2024 Troupe Contributors
# MIT License

"""
Troupe Error Classes.

All custom exceptions for clear error handling and exit codes.
Host-scoped errors (connection, module, template, timeout, cancellation) are
turned into task results by the executor; only load-time errors abort a run.
"""

from __future__ import annotations

import enum
from typing import Optional


class ExitCode(enum.IntEnum):
    """Process exit codes for a run."""

    SUCCESS = 0
    GENERIC_ERROR = 1
    HOST_FAILED = 2
    PARSE_ERROR = 3
    HOST_UNREACHABLE = 4
    CANCELLED = 130


class ErrorKind(str, enum.Enum):
    """Classification attached to failed task results."""

    MODULE = "module"
    TEMPLATE = "template"
    UNDEFINED = "undefined"
    CONDITIONAL = "conditional"
    TIMEOUT = "timeout"
    CANCELLED = "cancelled"
    CONNECTION = "connection"
    UNKNOWN_MODULE = "unknown_module"
    INVALID_ARGS = "invalid_args"


class TroupeError(Exception):
    """Base exception for all Troupe errors."""

    exit_code: int = ExitCode.GENERIC_ERROR

    def __init__(self, message: str, details: Optional[str] = None) -> None:
        self.message = message
        self.details = details
        super().__init__(message)

    def __str__(self) -> str:
        if self.details:
            return f"{self.message}\n  Details: {self.details}"
        return self.message


class ConfigError(TroupeError):
    """Invalid invocation configuration."""

    exit_code: int = ExitCode.GENERIC_ERROR


class ParseError(TroupeError):
    """Error parsing inventory, playbook, or other input files."""

    exit_code: int = ExitCode.PARSE_ERROR

    def __init__(
        self,
        message: str,
        file_path: Optional[str] = None,
        details: Optional[str] = None,
    ) -> None:
        self.file_path = file_path
        location = f" in {file_path}" if file_path else ""
        super().__init__(f"Parse error{location}: {message}", details)


class InventoryError(ParseError):
    """Malformed inventory input (bad structure, cyclic groups)."""

    def __init__(self, message: str, file_path: Optional[str] = None) -> None:
        super().__init__(message, file_path=file_path)


class PatternResolutionError(TroupeError):
    """A host pattern references a host or group that does not exist."""

    exit_code: int = ExitCode.PARSE_ERROR

    def __init__(self, pattern: str, term: Optional[str] = None) -> None:
        self.pattern = pattern
        self.term = term
        if term is not None:
            msg = f"Could not match '{term}' in host pattern '{pattern}'"
        else:
            msg = f"Invalid host pattern '{pattern}'"
        super().__init__(msg)


class TemplateError(TroupeError):
    """Error rendering a template or evaluating an expression."""

    exit_code: int = ExitCode.PARSE_ERROR

    def __init__(
        self,
        message: str,
        template: Optional[str] = None,
    ) -> None:
        self.template = template

        details = None
        if template:
            truncated = template[:100] + "..." if len(template) > 100 else template
            details = f"Template: {truncated}"

        super().__init__(f"Template error: {message}", details)


class UndefinedVariableError(TemplateError):
    """A template dereferenced a variable that no layer defines."""

    def __init__(
        self,
        variable: str,
        host: Optional[str] = None,
        template: Optional[str] = None,
    ) -> None:
        self.variable = variable
        self.host = host
        where = f" for host {host}" if host else ""
        super().__init__(f"'{variable}' is undefined{where}", template=template)

    def with_host(self, host: str) -> "UndefinedVariableError":
        """Return a copy naming ``host``."""
        return UndefinedVariableError(self.variable, host=host, template=self.template)


class ConditionalError(TemplateError):
    """A when/changed_when/failed_when expression could not be evaluated."""

    def __init__(self, keyword: str, message: str, template: Optional[str] = None) -> None:
        self.keyword = keyword
        super().__init__(f"Error evaluating '{keyword}': {message}", template=template)


class ConnectionError(TroupeError):
    """Error connecting to a remote host."""

    exit_code: int = ExitCode.HOST_UNREACHABLE

    def __init__(
        self,
        host: str,
        message: str,
        connection_type: Optional[str] = None,
        details: Optional[str] = None,
    ) -> None:
        self.host = host
        self.connection_type = connection_type
        conn_info = f" ({connection_type})" if connection_type else ""
        super().__init__(f"Connection to {host}{conn_info} failed: {message}", details)


class ModuleError(TroupeError):
    """A module raised instead of reporting a failed result."""

    exit_code: int = ExitCode.HOST_FAILED

    def __init__(
        self,
        module: str,
        host: str,
        message: str,
        rc: Optional[int] = None,
    ) -> None:
        self.module = module
        self.host = host
        self.rc = rc
        super().__init__(
            f"Module '{module}' failed on {host}: {message}",
            f"rc={rc}" if rc is not None else None,
        )


ModuleExecutionError = ModuleError


class TaskTimeoutError(TroupeError):
    """A module operation exceeded its timeout."""

    exit_code: int = ExitCode.HOST_FAILED

    def __init__(self, host: str, task: str, timeout: float) -> None:
        self.host = host
        self.task = task
        self.timeout = timeout
        super().__init__(f"Task '{task}' on {host} timed out after {timeout:g}s")


class TaskCancelledError(TroupeError):
    """The run was cancelled while a module operation was in flight."""

    exit_code: int = ExitCode.CANCELLED

    def __init__(self, host: str, task: str) -> None:
        self.host = host
        self.task = task
        super().__init__(f"Task '{task}' on {host} was cancelled")
