"""Tests for command-line argument parsing."""

from __future__ import annotations

from pathlib import Path

import pytest

from kubekite.cli import parse_args


class TestParseArgs:
    """Tests for parse_args()."""

    def test_defaults_are_unset(self) -> None:
        parsed = parse_args([])

        assert parsed.buildkite_api_token is None
        assert parsed.buildkite_org is None
        assert parsed.buildkite_queue is None
        assert parsed.kube_config is None
        assert parsed.kube_namespace is None
        assert parsed.kube_timeout is None
        assert parsed.job_template is None
        assert parsed.job_mapping is None
        assert parsed.poll_interval is None
        assert parsed.log_level is None
        assert parsed.debug is False
        assert parsed.env_file is None

    def test_all_flags(self) -> None:
        parsed = parse_args(
            [
                "--buildkite-api-token", "secret",
                "--buildkite-org", "acme",
                "--buildkite-queue", "builders",
                "--kube-config", "/etc/kube/config",
                "--kube-namespace", "ci",
                "--kube-timeout", "30",
                "--job-template", "job-linux.yaml",
                "--poll-interval", "10",
                "--log-level", "DEBUG",
                "--debug",
                "--env-file", "prod.env",
            ]
        )

        assert parsed.buildkite_api_token == "secret"
        assert parsed.buildkite_org == "acme"
        assert parsed.buildkite_queue == "builders"
        assert parsed.kube_config == "/etc/kube/config"
        assert parsed.kube_namespace == "ci"
        assert parsed.kube_timeout == 30
        assert parsed.job_template == Path("job-linux.yaml")
        assert parsed.poll_interval == 10
        assert parsed.log_level == "DEBUG"
        assert parsed.debug is True
        assert parsed.env_file == Path("prod.env")

    def test_job_mapping(self) -> None:
        assert parse_args(["--job-mapping", "mapping.yaml"]).job_mapping == Path("mapping.yaml")

    def test_template_and_mapping_are_exclusive(self) -> None:
        with pytest.raises(SystemExit):
            parse_args(["--job-template", "a.yaml", "--job-mapping", "b.yaml"])

    def test_invalid_log_level(self) -> None:
        with pytest.raises(SystemExit):
            parse_args(["--log-level", "LOUD"])

    def test_non_integer_timeout(self) -> None:
        with pytest.raises(SystemExit):
            parse_args(["--kube-timeout", "soon"])
