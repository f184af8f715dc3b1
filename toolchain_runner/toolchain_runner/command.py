"""Launcher for the downstream test command."""
import logging
import subprocess
from typing import List

from .config import TestConfig
from .errors import LaunchError

logger = logging.getLogger(__name__)


class TestCommand:
    """Runs the configured test command in the current working directory.

    Standard streams, environment and working directory are inherited from
    this process. The command's exit code is returned as-is.
    """

    __test__ = False

    def __init__(self, config: TestConfig):
        if not config.command:
            raise ValueError("Test command must not be empty")
        self.command: List[str] = list(config.command)

    def run(self) -> int:
        """Run the command and wait for it to finish.

        Returns:
            Exit code of the command

        Raises:
            LaunchError: If the command cannot be found or started
        """
        logger.info(f"Running test command: {' '.join(self.command)}")
        try:
            completed = subprocess.run(self.command, check=False)
        except FileNotFoundError as e:
            logger.error(f"Test command not found: {self.command[0]}")
            raise LaunchError(
                f"Command not found: {self.command[0]}",
                command=self.command,
                exit_code=127,
            ) from e
        except OSError as e:
            logger.error(f"Could not start test command: {e}")
            raise LaunchError(
                f"Could not start {self.command[0]}: {e}",
                command=self.command,
                exit_code=126,
            ) from e

        returncode = completed.returncode
        if returncode < 0:
            # Killed by a signal; report it the way a shell would.
            returncode = 128 - returncode
        logger.info(f"Test command exited with code {returncode}")
        return returncode
