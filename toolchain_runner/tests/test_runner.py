import logging
import sys
from unittest.mock import MagicMock

import pytest

from toolchain_runner.config import Config, FetchConfig, RunConfig, TestConfig
from toolchain_runner.errors import FetchError
from toolchain_runner.fetcher import ResourceFetcher
from toolchain_runner.runner import Runner, build_config, main, parse_args

MARK_RAN = "open('tests-ran', 'w').close()"


def _config(base_url: str, code: str, abort: bool = False) -> Config:
    return Config(
        fetch=FetchConfig(base_url=base_url),
        tests=TestConfig(command=[sys.executable, "-c", code]),
        run=RunConfig(abort_on_fetch_failure=abort),
    )


def test_run_fetches_pin_then_tests_see_it(pin_server, workdir) -> None:
    pin_server.add("/main/rust-toolchain", b"nightly-2021-01-01\n")
    check = "import sys; sys.exit(0 if open('rust-toolchain').read() == 'nightly-2021-01-01\\n' else 5)"

    runner = Runner(_config(pin_server.base_url, check))

    assert runner.run() == 0
    assert (workdir / "rust-toolchain").read_bytes() == b"nightly-2021-01-01\n"
    assert runner.summary.get_summary()["fetch_succeeded"] is True


def test_run_propagates_test_failure_exit_code(pin_server, workdir) -> None:
    pin_server.add("/main/rust-toolchain", b"nightly-2021-01-01\n")

    runner = Runner(_config(pin_server.base_url, "import sys; sys.exit(1)"))

    assert runner.run() == 1
    assert runner.summary.exit_code == 1


def test_fetch_failure_still_runs_tests(pin_server, workdir) -> None:
    # No route registered, so the server answers 404.
    runner = Runner(_config(pin_server.base_url, MARK_RAN))

    assert runner.run() == 0
    assert (workdir / "tests-ran").exists()
    assert not (workdir / "rust-toolchain").exists()
    summary = runner.summary.get_summary()
    assert summary["fetch_succeeded"] is False
    assert "HTTP 404" in summary["fetch_error"]
    assert summary["tests_ran"] is True


def test_fetch_failure_keeps_stale_pin_for_tests(pin_server, workdir) -> None:
    (workdir / "rust-toolchain").write_text("nightly-2020-06-01\n")
    check = "import sys; sys.exit(0 if open('rust-toolchain').read() == 'nightly-2020-06-01\\n' else 4)"

    assert Runner(_config(pin_server.base_url, check)).run() == 0


def test_rejected_timeout_still_runs_tests(pin_server, workdir) -> None:
    pin_server.add("/main/rust-toolchain", b"stable\n")
    config = _config(pin_server.base_url, MARK_RAN)
    config.fetch.timeout_seconds = -1.0

    runner = Runner(config)

    assert runner.run() == 0
    assert (workdir / "tests-ran").exists()
    assert runner.summary.get_summary()["fetch_succeeded"] is False


def test_main_ignores_negative_timeout_from_env(pin_server, workdir, monkeypatch: pytest.MonkeyPatch) -> None:
    pin_server.add("/main/rust-toolchain", b"stable\n")
    monkeypatch.setenv("TOOLCHAIN_TIMEOUT_SECONDS", "-5")

    exit_code = main(["--base-url", pin_server.base_url, "--", sys.executable, "-c", MARK_RAN])

    assert exit_code == 0
    assert (workdir / "tests-ran").exists()
    assert (workdir / "rust-toolchain").read_bytes() == b"stable\n"


def test_abort_on_fetch_failure_skips_tests(pin_server, workdir) -> None:
    runner = Runner(_config(pin_server.base_url, MARK_RAN, abort=True))

    assert runner.run() == 1
    assert not (workdir / "tests-ran").exists()
    assert runner.summary.get_summary()["tests_ran"] is False


def test_abort_mode_runs_tests_when_fetch_succeeds(pin_server, workdir) -> None:
    pin_server.add("/main/rust-toolchain", b"stable\n")

    assert Runner(_config(pin_server.base_url, MARK_RAN, abort=True)).run() == 0
    assert (workdir / "tests-ran").exists()


def test_missing_test_command_exits_127(pin_server, workdir) -> None:
    pin_server.add("/main/rust-toolchain", b"stable\n")
    config = _config(pin_server.base_url, "")
    config.tests.command = ["definitely-not-a-real-test-runner-xyz"]

    runner = Runner(config)

    assert runner.run() == 127
    assert runner.summary.get_result("tests").success is False


def test_fetch_happens_before_tests(workdir) -> None:
    calls = []
    fetcher = MagicMock(spec=ResourceFetcher)
    fetcher.fetch.side_effect = lambda url, destination: calls.append("fetch") or _raise_fetch(url)
    test_command = MagicMock()
    test_command.command = ["cargo", "test"]
    test_command.run.side_effect = lambda: calls.append("tests") or 0

    runner = Runner(Config(), fetcher=fetcher, test_command=test_command)

    assert runner.run() == 0
    assert calls == ["fetch", "tests"]
    fetcher.fetch.assert_called_once_with(
        "https://raw.githubusercontent.com/EmbarkStudios/rust-gpu/main/rust-toolchain",
        "rust-toolchain",
    )
    fetcher.close.assert_called_once_with()


def _raise_fetch(url: str) -> None:
    raise FetchError("unreachable", url=url)


def test_unexpected_error_exits_1(workdir) -> None:
    fetcher = MagicMock(spec=ResourceFetcher)
    fetcher.fetch.side_effect = RuntimeError("boom")
    test_command = MagicMock()
    test_command.command = ["cargo", "test"]

    runner = Runner(Config(), fetcher=fetcher, test_command=test_command)

    assert runner.run() == 1
    test_command.run.assert_not_called()


def test_summary_is_printed(pin_server, workdir, capsys) -> None:
    pin_server.add("/main/rust-toolchain", b"stable\n")

    Runner(_config(pin_server.base_url, "import sys; sys.exit(2)")).run()

    out = capsys.readouterr().out
    assert "RUN SUMMARY" in out
    assert f"{pin_server.base_url}/main/rust-toolchain" in out
    assert "Exit Code:         2" in out


def test_invalid_config_is_rejected_at_construction() -> None:
    with pytest.raises(ValueError):
        Runner(Config(fetch=FetchConfig(branch="")))


def test_parse_args_strips_separator_before_command() -> None:
    args = parse_args(["--branch", "dev", "--", "cargo", "test", "--release"])

    config = build_config(args)

    assert config.fetch.branch == "dev"
    assert config.tests.command == ["cargo", "test", "--release"]


def test_cli_overrides_environment(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("TOOLCHAIN_BRANCH", "from-env")
    monkeypatch.setenv("TOOLCHAIN_FILE", "from-env.toml")

    config = build_config(
        parse_args(["--branch", "from-cli", "--output", "pin", "--abort-on-fetch-failure"])
    )

    assert config.fetch.branch == "from-cli"
    assert config.fetch.file_path == "from-env.toml"
    assert config.fetch.destination == "pin"
    assert config.run.abort_on_fetch_failure is True
    assert config.tests.command == ["cargo", "test"]


def test_main_end_to_end(pin_server, workdir) -> None:
    pin_server.add("/release/toolchains/rust-toolchain", b"nightly-2021-01-01\n")
    check = "import sys; sys.exit(0 if open('rust-toolchain').read() == 'nightly-2021-01-01\\n' else 6)"

    exit_code = main([
        "--base-url", pin_server.base_url,
        "--branch", "release",
        "--file", "toolchains/rust-toolchain",
        "--", sys.executable, "-c", check,
    ])

    assert exit_code == 0
    assert pin_server.requests == ["/release/toolchains/rust-toolchain"]


def test_main_propagates_exit_code(pin_server, workdir) -> None:
    pin_server.add("/main/rust-toolchain", b"stable\n")

    exit_code = main(["--base-url", pin_server.base_url, "--", sys.executable, "-c", "import sys; sys.exit(1)"])

    assert exit_code == 1


def test_main_reports_configuration_error(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("TOOLCHAIN_FILE", "toolchains/")

    assert main([]) == 1


def test_successful_fetch_logs_resolved_url(pin_server, workdir, caplog) -> None:
    pin_server.add("/main/rust-toolchain", b"stable\n")
    caplog.set_level(logging.INFO, logger="toolchain_runner.runner")

    Runner(_config(pin_server.base_url, "pass")).run()

    assert f"Fetched {pin_server.base_url}/main/rust-toolchain (7 bytes) into rust-toolchain" in caplog.text
