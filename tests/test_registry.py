"""Tests for the template registry and job mapping files."""

from __future__ import annotations

import logging
from pathlib import Path
from unittest.mock import MagicMock

import pytest

from kubekite.registry import (
    JobLauncher,
    JobMapping,
    MappingError,
    TemplateBinding,
    TemplateRegistry,
    build_registry,
    load_job_mapping,
    mappings_from_config,
)
from tests.helpers import make_config, write_file
from tests.mocks import RecordingLauncher

MAPPING_YAML = """\
- template: templates/linux.yaml
  filters: ["os=linux"]
- template: templates/gpu.yaml
  filters:
    - os=linux
    - gpu=true
- template: templates/default.yaml
"""


class TestLoadJobMapping:
    """Tests for load_job_mapping()."""

    def test_loads_entries_in_file_order(self, tmp_path: Path) -> None:
        path = write_file(tmp_path / "mapping.yaml", MAPPING_YAML)

        mappings = load_job_mapping(path)

        assert mappings == [
            JobMapping(template=Path("templates/linux.yaml"), filters=["os=linux"]),
            JobMapping(template=Path("templates/gpu.yaml"), filters=["os=linux", "gpu=true"]),
            JobMapping(template=Path("templates/default.yaml"), filters=[]),
        ]

    def test_missing_file(self, tmp_path: Path) -> None:
        with pytest.raises(MappingError, match="Failed to read"):
            load_job_mapping(tmp_path / "missing.yaml")

    def test_invalid_yaml(self, tmp_path: Path) -> None:
        path = write_file(tmp_path / "mapping.yaml", "- template: [unclosed\n")
        with pytest.raises(MappingError, match="Failed to parse"):
            load_job_mapping(path)

    @pytest.mark.parametrize("content", ["template: a.yaml\n", "", "42\n"])
    def test_top_level_must_be_a_list(self, tmp_path: Path, content: str) -> None:
        path = write_file(tmp_path / "mapping.yaml", content)
        with pytest.raises(MappingError, match="must be a list"):
            load_job_mapping(path)

    def test_empty_list(self, tmp_path: Path) -> None:
        path = write_file(tmp_path / "mapping.yaml", "[]\n")
        with pytest.raises(MappingError, match="lists no templates"):
            load_job_mapping(path)

    @pytest.mark.parametrize(
        ("content", "message"),
        [
            ("- just-a-string\n", "must be a mapping"),
            ("- filters: [a]\n", "needs a 'template' path"),
            ("- template: a.yaml\n  filters: os=linux\n", "must be a list of strings"),
            ("- template: a.yaml\n  filters: [1, 2]\n", "must be a list of strings"),
        ],
    )
    def test_malformed_entries(self, tmp_path: Path, content: str, message: str) -> None:
        path = write_file(tmp_path / "mapping.yaml", content)
        with pytest.raises(MappingError, match=message):
            load_job_mapping(path)


class TestMappingsFromConfig:
    """Tests for mappings_from_config()."""

    def test_single_template_has_no_filters(self) -> None:
        mappings = mappings_from_config(make_config(template=Path("job-linux.yaml")))
        assert mappings == [JobMapping(template=Path("job-linux.yaml"))]

    def test_mapping_file(self, tmp_path: Path) -> None:
        path = write_file(tmp_path / "mapping.yaml", MAPPING_YAML)
        mappings = mappings_from_config(make_config(template=None, mapping=path))
        assert [m.template.name for m in mappings] == ["linux.yaml", "gpu.yaml", "default.yaml"]

    def test_nothing_configured(self) -> None:
        with pytest.raises(MappingError):
            mappings_from_config(make_config(template=None))


class TestTemplateBinding:
    """Tests for TemplateBinding."""

    def test_filters_are_sorted_and_unique(self) -> None:
        binding = TemplateBinding("b", RecordingLauncher(), ("os=linux", "gpu=true", "os=linux"))
        assert binding.filters == ("gpu=true", "os=linux")

    def test_has_filter(self) -> None:
        binding = TemplateBinding("b", RecordingLauncher(), ("linux", "windows"))
        assert binding.has_filter("linux")
        assert binding.has_filter("windows")
        assert not binding.has_filter("aaa")
        assert not binding.has_filter("macos")
        assert not binding.has_filter("zzz")

    def test_recording_launcher_is_a_job_launcher(self) -> None:
        assert isinstance(RecordingLauncher(), JobLauncher)


class TestBuildRegistry:
    """Tests for build_registry() and TemplateRegistry."""

    def test_one_binding_per_mapping_in_order(self, caplog: pytest.LogCaptureFixture) -> None:
        created: list[RecordingLauncher] = []

        def factory(mapping: JobMapping) -> RecordingLauncher:
            launcher = RecordingLauncher()
            created.append(launcher)
            return launcher

        mappings = [
            JobMapping(template=Path("linux.yaml"), filters=["os=linux"]),
            JobMapping(template=Path("gpu.yaml"), filters=["os=linux", "gpu=true"]),
        ]

        with caplog.at_level(logging.INFO):
            registry = build_registry(mappings, factory)

        assert len(registry) == 2
        assert [b.name for b in registry] == ["linux.yaml", "gpu.yaml"]
        assert registry[1].filters == ("gpu=true", "os=linux")
        assert [b.launcher for b in registry] == created
        assert "Registered job template gpu.yaml" in caplog.text

    def test_registrations_go_to_given_logger(self) -> None:
        logger = MagicMock(spec=logging.Logger)

        build_registry(
            [JobMapping(template=Path("linux.yaml"), filters=["os=linux"])],
            lambda mapping: RecordingLauncher(),
            logger=logger,
        )

        logger.info.assert_called_once_with(
            "Registered job template %s with filters %s", "linux.yaml", ["os=linux"]
        )

    def test_factory_errors_propagate(self) -> None:
        def factory(mapping: JobMapping) -> RecordingLauncher:
            raise RuntimeError(f"cannot load {mapping.template}")

        with pytest.raises(RuntimeError, match="cannot load linux.yaml"):
            build_registry([JobMapping(template=Path("linux.yaml"))], factory)

    def test_empty_registry_is_rejected(self) -> None:
        with pytest.raises(MappingError, match="at least one"):
            TemplateRegistry([])

    def test_registry_is_read_only(self) -> None:
        registry = TemplateRegistry([TemplateBinding("a", RecordingLauncher())])
        assert not hasattr(registry, "append")
        assert "TemplateRegistry(['a'])" == repr(registry)
