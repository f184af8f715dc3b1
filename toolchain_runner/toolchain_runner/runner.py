"""Main runner for the toolchain bootstrap.

Fetches the toolchain pin, then runs the test command and exits with its code.
"""
import argparse
import logging
import sys
import time
from typing import List, Optional

from .command import TestCommand
from .config import Config
from .errors import FetchError, LaunchError
from .fetcher import ResourceFetcher
from .otel import OTELInstrumentation

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


class StepResult:
    """Result of a single runner step."""

    def __init__(
        self,
        name: str,
        success: bool,
        duration_ms: float,
        error: Optional[str] = None,
        exit_code: Optional[int] = None,
    ):
        self.name = name
        self.success = success
        self.duration_ms = duration_ms
        self.error = error
        self.exit_code = exit_code


class RunSummary:
    """Summary of the entire run."""

    def __init__(self, url: str, destination: str):
        self.url = url
        self.destination = destination
        self.start_time = time.time()
        self.results: List[StepResult] = []
        self.exit_code: Optional[int] = None

    def add_result(self, result: StepResult) -> None:
        """Add a step result."""
        self.results.append(result)

    def get_result(self, name: str) -> Optional[StepResult]:
        for result in self.results:
            if result.name == name:
                return result
        return None

    def get_summary(self) -> dict:
        """Get summary statistics."""
        fetch = self.get_result("fetch")
        tests = self.get_result("tests")
        return {
            "url": self.url,
            "destination": self.destination,
            "fetch_succeeded": bool(fetch and fetch.success),
            "fetch_error": fetch.error if fetch else None,
            "tests_ran": tests is not None,
            "exit_code": self.exit_code,
            "total_wall_time_seconds": time.time() - self.start_time,
        }

    def print_summary(self) -> None:
        """Print summary to console."""
        summary = self.get_summary()

        print("\n" + "=" * 60)
        print("RUN SUMMARY")
        print("=" * 60)
        print(f"Toolchain URL:     {summary['url']}")
        print(f"Local File:        {summary['destination']}")
        fetch_status = "ok" if summary["fetch_succeeded"] else f"FAILED ({summary['fetch_error']})"
        print(f"Fetch:             {fetch_status}")
        print(f"Tests Ran:         {'yes' if summary['tests_ran'] else 'no'}")
        print(f"Exit Code:         {summary['exit_code']}")
        print(f"Total Wall Time:   {summary['total_wall_time_seconds']:.2f}s")
        print("=" * 60 + "\n")


class Runner:
    """Fetch-then-test orchestration."""

    def __init__(
        self,
        config: Config,
        fetcher: Optional[ResourceFetcher] = None,
        test_command: Optional[TestCommand] = None,
    ):
        """Initialize runner.

        Args:
            config: Complete configuration
            fetcher: Optional fetcher override
            test_command: Optional test command override

        Raises:
            ValueError: If the configuration cannot be resolved
        """
        self.config = config
        self.resource = config.fetch.resource
        self.destination = config.fetch.destination
        self.fetcher = fetcher or ResourceFetcher(config.fetch)
        self.test_command = test_command or TestCommand(config.tests)
        self.otel = OTELInstrumentation(config.otel)
        self.summary = RunSummary(self.resource.url, self.destination)

    def initialize(self) -> None:
        """Initialize all components."""
        logger.debug("Initializing runner components")
        self.otel.initialize()

    def fetch_toolchain(self) -> StepResult:
        """Download the toolchain pin into the working directory.

        Returns:
            StepResult for the fetch step
        """
        url = self.resource.url
        start_time = time.time()

        with self.otel.step_span("fetch", **{"http.url": url, "file.path": self.destination}) as span:
            try:
                result = self.fetcher.fetch(url, self.destination)
            except FetchError as e:
                self.otel.record_failure(span, "fetch", e)
                return StepResult(
                    name="fetch",
                    success=False,
                    duration_ms=(time.time() - start_time) * 1000,
                    error=str(e),
                )
            finally:
                self.fetcher.close()

            self.otel.record_fetch_success(span, result.bytes_written, result.duration_ms)
            logger.info(f"Fetched {result.url} ({result.bytes_written} bytes) into {result.destination}")
            return StepResult(name="fetch", success=True, duration_ms=result.duration_ms)

    def run_tests(self) -> StepResult:
        """Run the test command.

        Returns:
            StepResult carrying the command's exit code
        """
        start_time = time.time()

        with self.otel.step_span("tests", **{"process.command": " ".join(self.test_command.command)}) as span:
            try:
                exit_code = self.test_command.run()
            except LaunchError as e:
                self.otel.record_failure(span, "tests", e)
                return StepResult(
                    name="tests",
                    success=False,
                    duration_ms=(time.time() - start_time) * 1000,
                    error=str(e),
                    exit_code=e.exit_code,
                )

            duration_ms = (time.time() - start_time) * 1000
            self.otel.record_test_exit(span, exit_code, duration_ms)
            return StepResult(
                name="tests",
                success=exit_code == 0,
                duration_ms=duration_ms,
                exit_code=exit_code,
            )

    def run(self) -> int:
        """Fetch the toolchain pin, then run the tests.

        A failed fetch does not stop the run unless ``abort_on_fetch_failure``
        is set; the tests then run against whatever file is already on disk.

        Returns:
            Exit code of the test command, or 1 if the run was aborted
        """
        try:
            self.initialize()

            fetch_result = self.fetch_toolchain()
            self.summary.add_result(fetch_result)

            if not fetch_result.success:
                if self.config.run.abort_on_fetch_failure:
                    logger.error("Aborting due to fetch failure (ABORT_ON_FETCH_FAILURE=true)")
                    self.summary.exit_code = 1
                    return 1
                logger.warning(f"Fetch failed, running tests with existing {self.destination}: {fetch_result.error}")

            test_result = self.run_tests()
            self.summary.add_result(test_result)
            self.summary.exit_code = test_result.exit_code
            return test_result.exit_code

        except Exception as e:
            logger.exception(f"Fatal error in runner: {e}")
            self.summary.exit_code = 1
            return 1
        finally:
            self.summary.print_summary()
            self.otel.shutdown()


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    """Parse command line arguments.

    Args:
        argv: Argument list (defaults to ``sys.argv[1:]``)

    Returns:
        Parsed arguments
    """
    parser = argparse.ArgumentParser(
        description="Fetch a toolchain pin, then run the test suite",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Environment Variables:
  TOOLCHAIN_BASE_URL         Raw-content base URL (default: rust-gpu on GitHub)
  TOOLCHAIN_BRANCH           Branch to fetch from (default: main)
  TOOLCHAIN_FILE             File path on the branch (default: rust-toolchain)
  TOOLCHAIN_OUTPUT           Local file name (default: basename of TOOLCHAIN_FILE)
  TOOLCHAIN_TIMEOUT_SECONDS  HTTP timeout in seconds (default: none)
  TOOLCHAIN_VERIFY_TLS       Verify TLS certificates (default: true)

  TEST_COMMAND               Test command line (default: cargo test)
  ABORT_ON_FETCH_FAILURE     Skip tests when the fetch fails (default: false)

  OTEL_ENABLED               Export telemetry (default: false)
  OTEL_SERVICE_NAME          Service name for telemetry (default: toolchain-runner)
  OTEL_EXPORTER_OTLP_ENDPOINT  OTLP exporter endpoint
  OTEL_EXPORTER_OTLP_INSECURE  Use insecure connection for OTLP (default: true)
  OTEL_RESOURCE_ATTRIBUTES   Additional resource attributes
  OTEL_INSTRUMENT_REQUESTS   Instrument requests (default: true)

Anything after "--" replaces the test command, e.g.
  toolchain-runner -- cargo test --release
        """,
    )

    parser.add_argument("--base-url", help="Raw-content base URL")
    parser.add_argument("--branch", help="Branch to fetch the toolchain pin from")
    parser.add_argument("--file", dest="file_path", help="File path on the branch")
    parser.add_argument("--output", "-o", help="Local file name to write")
    parser.add_argument(
        "--abort-on-fetch-failure",
        action="store_true",
        help="Do not run the tests when the fetch fails",
    )
    parser.add_argument(
        "--verbose",
        "-v",
        action="store_true",
        help="Enable verbose logging",
    )
    parser.add_argument(
        "command",
        nargs=argparse.REMAINDER,
        help="Test command to run instead of the configured one",
    )

    return parser.parse_args(argv)


def build_config(args: argparse.Namespace) -> Config:
    """Load configuration from the environment and apply CLI overrides."""
    config = Config.from_env()

    if args.base_url:
        config.fetch.base_url = args.base_url
    if args.branch:
        config.fetch.branch = args.branch
    if args.file_path:
        config.fetch.file_path = args.file_path
    if args.output:
        config.fetch.output = args.output
    if args.abort_on_fetch_failure:
        config.run.abort_on_fetch_failure = True

    command = list(args.command or [])
    if command and command[0] == "--":
        command = command[1:]
    if command:
        config.tests.command = command

    return config


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point.

    Returns:
        Exit code
    """
    args = parse_args(argv)

    # Set log level
    if args.verbose:
        logging.getLogger().setLevel(logging.DEBUG)

    try:
        config = build_config(args)
        runner = Runner(config)
        return runner.run()

    except ValueError as e:
        logger.error(f"Configuration error: {e}")
        return 1
    except KeyboardInterrupt:
        logger.info("Interrupted by user")
        return 130
    except Exception as e:
        logger.exception(f"Unexpected error: {e}")
        return 1


if __name__ == "__main__":
    sys.exit(main())
