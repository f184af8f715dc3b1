"""Toolchain bootstrap runner.

Downloads a toolchain pin file (by default rust-gpu's ``rust-toolchain``) into
the working directory, then runs the test command and exits with its status.
"""

__version__ = "0.1.0"

from .config import Config, RemoteResource
from .errors import FetchError, LaunchError, ProcessError
from .runner import Runner

__all__ = [
    "Config",
    "FetchError",
    "LaunchError",
    "ProcessError",
    "RemoteResource",
    "Runner",
    "__version__",
]
