"""Configuration management for the toolchain runner.

Configuration is loaded from environment variables with optional CLI overrides.
Defaults reproduce the classic bootstrap: fetch rust-gpu's ``rust-toolchain``
pin from ``main`` and run ``cargo test``.
"""
import os
import shlex
from dataclasses import dataclass, field
from typing import List, Optional

DEFAULT_BASE_URL = "https://raw.githubusercontent.com/EmbarkStudios/rust-gpu"
DEFAULT_BRANCH = "main"
DEFAULT_FILE_PATH = "rust-toolchain"
DEFAULT_TEST_COMMAND = ["cargo", "test"]


def _get_bool(key: str, default: bool = False) -> bool:
    """Get boolean value from environment variable."""
    value = os.getenv(key, "").lower()
    if value in ("1", "true", "yes", "on"):
        return True
    elif value in ("0", "false", "no", "off"):
        return False
    return default


def _get_positive_float(key: str, default: Optional[float] = None) -> Optional[float]:
    """Get a float greater than zero from environment variable."""
    value = os.getenv(key)
    if value is None or not value.strip():
        return default
    try:
        parsed = float(value)
    except ValueError:
        return default
    if not parsed > 0:
        return default
    return parsed


@dataclass(frozen=True)
class RemoteResource:
    """Reference to a single file on a branch of a raw-content host."""

    base_url: str
    branch: str
    file_path: str

    @property
    def url(self) -> str:
        """Resolved URL: ``base_url/branch/file_path``, concatenated verbatim."""
        return self.base_url + "/" + self.branch + "/" + self.file_path

    @property
    def basename(self) -> str:
        return self.file_path.rsplit("/", 1)[-1]


@dataclass
class FetchConfig:
    """Remote toolchain pin configuration."""

    base_url: str = DEFAULT_BASE_URL
    branch: str = DEFAULT_BRANCH
    file_path: str = DEFAULT_FILE_PATH
    output: Optional[str] = None
    timeout_seconds: Optional[float] = None
    verify_tls: bool = True

    @classmethod
    def from_env(cls) -> "FetchConfig":
        """Load fetch configuration from environment variables."""
        return cls(
            base_url=os.getenv("TOOLCHAIN_BASE_URL") or DEFAULT_BASE_URL,
            branch=os.getenv("TOOLCHAIN_BRANCH") or DEFAULT_BRANCH,
            file_path=os.getenv("TOOLCHAIN_FILE") or DEFAULT_FILE_PATH,
            output=os.getenv("TOOLCHAIN_OUTPUT") or None,
            timeout_seconds=_get_positive_float("TOOLCHAIN_TIMEOUT_SECONDS"),
            verify_tls=_get_bool("TOOLCHAIN_VERIFY_TLS", True),
        )

    @property
    def resource(self) -> RemoteResource:
        if not self.base_url:
            raise ValueError("Toolchain base URL must not be empty")
        if not self.branch:
            raise ValueError("Toolchain branch must not be empty")
        if not self.file_path:
            raise ValueError("Toolchain file path must not be empty")
        return RemoteResource(
            base_url=self.base_url,
            branch=self.branch,
            file_path=self.file_path,
        )

    @property
    def destination(self) -> str:
        """Local artifact name, defaulting to the remote file's basename."""
        destination = self.output or self.resource.basename
        if not destination:
            raise ValueError(f"Cannot derive a local file name from {self.file_path!r}")
        return destination


@dataclass
class TestConfig:
    """Downstream test command configuration."""

    __test__ = False

    command: List[str] = field(default_factory=lambda: list(DEFAULT_TEST_COMMAND))

    @classmethod
    def from_env(cls) -> "TestConfig":
        """Load test command configuration from environment variables."""
        raw = os.getenv("TEST_COMMAND")
        if raw is None or not raw.strip():
            return cls()
        return cls(command=shlex.split(raw))


@dataclass
class RunConfig:
    """Run-level behavior."""

    abort_on_fetch_failure: bool = False

    @classmethod
    def from_env(cls) -> "RunConfig":
        return cls(abort_on_fetch_failure=_get_bool("ABORT_ON_FETCH_FAILURE", False))


@dataclass
class OTELConfig:
    """OpenTelemetry configuration."""

    enabled: bool = False
    service_name: str = "toolchain-runner"
    exporter_endpoint: Optional[str] = None
    resource_attributes: Optional[str] = None
    instrument_requests: bool = True
    exporter_insecure: bool = True

    @classmethod
    def from_env(cls) -> "OTELConfig":
        """Load OTEL configuration from environment variables."""
        return cls(
            enabled=_get_bool("OTEL_ENABLED", False),
            service_name=os.getenv("OTEL_SERVICE_NAME", "toolchain-runner"),
            exporter_endpoint=os.getenv("OTEL_EXPORTER_OTLP_ENDPOINT"),
            resource_attributes=os.getenv("OTEL_RESOURCE_ATTRIBUTES"),
            instrument_requests=_get_bool("OTEL_INSTRUMENT_REQUESTS", True),
            exporter_insecure=_get_bool("OTEL_EXPORTER_OTLP_INSECURE", True),
        )


@dataclass
class Config:
    """Complete runner configuration."""

    fetch: FetchConfig = field(default_factory=FetchConfig)
    tests: TestConfig = field(default_factory=TestConfig)
    run: RunConfig = field(default_factory=RunConfig)
    otel: OTELConfig = field(default_factory=OTELConfig)

    @classmethod
    def from_env(cls) -> "Config":
        """Load complete configuration from environment variables."""
        return cls(
            fetch=FetchConfig.from_env(),
            tests=TestConfig.from_env(),
            run=RunConfig.from_env(),
            otel=OTELConfig.from_env(),
        )
