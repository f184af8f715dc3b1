"""Errors raised by the fetch and test steps."""
from typing import Optional


class ProcessError(Exception):
    """Base class for network, HTTP, filesystem and process-launch failures."""


class FetchError(ProcessError):
    """The toolchain pin could not be downloaded or written to disk."""

    def __init__(self, message: str, url: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.url = url
        self.status_code = status_code


class LaunchError(ProcessError):
    """The test command could not be started.

    ``exit_code`` follows shell conventions: 127 when the executable cannot be
    found, 126 when it was found but could not be executed.
    """

    def __init__(self, message: str, command: list, exit_code: int = 126):
        super().__init__(message)
        self.command = command
        self.exit_code = exit_code
