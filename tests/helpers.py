"""Test helper functions for kubekite tests.

Usage::

    from tests.helpers import make_build, make_config, make_job_data

    def test_example():
        build = make_build([make_job_data(id="job-1", rules=["queue=default"])])
"""

from __future__ import annotations

from pathlib import Path
from typing import Any

from kubekite.buildkite import BuildkiteBuild
from kubekite.config import (
    BuildkiteConfig,
    Config,
    JobsConfig,
    KubernetesConfig,
    PollingConfig,
)
from kubekite.registry import TemplateBinding, TemplateRegistry
from tests.mocks import RecordingLauncher

JOB_TEMPLATE_YAML = """\
apiVersion: batch/v1
kind: Job
metadata:
  generateName: buildkite-agent-
  labels:
    app: buildkite-agent
spec:
  backoffLimit: 0
  template:
    spec:
      restartPolicy: Never
      containers:
        - name: agent
          image: buildkite/agent:3
          env:
            - name: BUILDKITE_AGENT_TOKEN
              value: secret
        - name: sidecar
          image: busybox
"""


def make_job_data(
    id: str = "job-1",
    state: str = "scheduled",
    rules: list[str] | None = None,
    type: str = "script",
) -> dict[str, Any]:
    """Build a job object as found in the Buildkite builds listing."""
    return {
        "id": id,
        "type": type,
        "name": f"step for {id}",
        "state": state,
        "web_url": f"https://buildkite.com/acme/pipeline/builds/1#{id}",
        "agent_query_rules": rules if rules is not None else ["queue=default"],
    }


def make_build_data(jobs: list[dict[str, Any]], number: int = 1) -> dict[str, Any]:
    return {
        "id": f"build-{number}",
        "number": number,
        "pipeline": {"slug": "pipeline"},
        "jobs": jobs,
    }


def make_build(jobs: list[dict[str, Any]], number: int = 1) -> BuildkiteBuild:
    return BuildkiteBuild.from_api_response(make_build_data(jobs, number))


def make_config(
    org: str = "acme",
    queue: str = "default",
    interval: int = 1,
    queue_capacity: int = 10,
    template: Path | None = Path("job.yaml"),
    mapping: Path | None = None,
) -> Config:
    return Config(
        buildkite=BuildkiteConfig(api_token="token", org=org, queue=queue),
        kubernetes=KubernetesConfig(),
        jobs=JobsConfig(template=template, mapping=mapping),
        polling=PollingConfig(interval=interval, queue_capacity=queue_capacity),
    )


def make_registry(*filter_sets: list[str]) -> tuple[TemplateRegistry, list[RecordingLauncher]]:
    """Create a registry with one recording launcher per filter set."""
    launchers = [RecordingLauncher() for _ in filter_sets]
    bindings = [
        TemplateBinding(name=f"template-{i}", launcher=launcher, filters=tuple(filters))
        for i, (launcher, filters) in enumerate(zip(launchers, filter_sets, strict=True))
    ]
    return TemplateRegistry(bindings), launchers


def write_file(path: Path, content: str) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(content, encoding="utf-8")
    return path
