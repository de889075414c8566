"""Kubernetes Job launcher.

A KubeJobManager owns one job template and creates a Kubernetes Job from it
for each Buildkite job it is asked to launch. The Buildkite agent in the
launched pod acquires its job through ``BUILDKITE_AGENT_ACQUIRE_JOB``.

Jobs are named after the Buildkite job ID, so launching the same job twice
hits a 409 from the API server; that is treated as already launched.
"""

from __future__ import annotations

import base64
import copy
import logging
import os
import re
import ssl
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Self

import httpx
import yaml

from kubekite.config import DEFAULT_KUBE_NAMESPACE, DEFAULT_KUBE_TIMEOUT
from kubekite.logging import ContextAdapter, get_logger

JOB_NAME_PREFIX = "buildkite-agent-"
MAX_NAME_LENGTH = 63

LABEL_JOB_ID = "kubekite/buildkite-job-id"
LABEL_ORG = "kubekite/buildkite-org"

ACQUIRE_JOB_ENV = "BUILDKITE_AGENT_ACQUIRE_JOB"

SERVICE_ACCOUNT_DIR = Path("/var/run/secrets/kubernetes.io/serviceaccount")

_INVALID_NAME_CHARS = re.compile(r"[^a-z0-9-]+")


class KubeJobManagerError(Exception):
    """Raised when a job manager cannot be constructed."""

    pass


class JobLaunchError(Exception):
    """Raised when the API server rejects or never receives a Job."""

    pass


@dataclass(frozen=True)
class ClusterAccess:
    """Where the API server is and how to authenticate to it."""

    server: str
    token: str | None = None
    verify: ssl.SSLContext | bool = True


def _read_data_or_file(entry: dict[str, Any], key: str) -> bytes | None:
    """Return ``<key>-data`` decoded, or the contents of the file at ``<key>``."""
    data = entry.get(f"{key}-data")
    if data:
        return base64.b64decode(data)
    path = entry.get(key)
    if path:
        return Path(path).expanduser().read_bytes()
    return None


def _ssl_context(
    ca_pem: bytes | None,
    cert_pem: bytes | None = None,
    key_pem: bytes | None = None,
) -> ssl.SSLContext:
    context = ssl.create_default_context(cadata=ca_pem.decode() if ca_pem else None)
    if cert_pem and key_pem:
        # load_cert_chain only accepts paths
        with tempfile.TemporaryDirectory() as tmp:
            cert_file = Path(tmp) / "client.crt"
            key_file = Path(tmp) / "client.key"
            cert_file.write_bytes(cert_pem)
            key_file.write_bytes(key_pem)
            context.load_cert_chain(str(cert_file), str(key_file))
    return context


def _named(entries: object, name: str, kind: str) -> dict[str, Any]:
    if entries is not None and not isinstance(entries, list):
        raise KubeJobManagerError(f"kubeconfig {kind}s must be a list")
    for entry in entries or []:
        if not isinstance(entry, dict):
            raise KubeJobManagerError(f"kubeconfig has a {kind} entry that is not a mapping")
        if entry.get("name") == name:
            value = entry.get(kind) or {}
            if not isinstance(value, dict):
                raise KubeJobManagerError(f"kubeconfig {kind} {name!r} is not a mapping")
            return value
    raise KubeJobManagerError(f"kubeconfig has no {kind} named {name!r}")


def load_kubeconfig(path: str | Path) -> ClusterAccess:
    """Resolve cluster access from the current context of a kubeconfig file.

    Supports bearer tokens (inline or ``tokenFile``), client certificates and
    custom certificate authorities, inline or as file references.

    Raises:
        KubeJobManagerError: If the file is unreadable or incomplete.
    """
    try:
        with open(Path(path).expanduser(), encoding="utf-8") as f:
            kubeconfig = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise KubeJobManagerError(f"Invalid YAML in kubeconfig {path}: {e}") from e
    except OSError as e:
        raise KubeJobManagerError(f"Unable to read kubeconfig {path}: {e}") from e

    if not isinstance(kubeconfig, dict):
        raise KubeJobManagerError(f"kubeconfig {path} is not a mapping")

    context_name = kubeconfig.get("current-context")
    if not context_name:
        raise KubeJobManagerError(f"kubeconfig {path} has no current-context")

    context = _named(kubeconfig.get("contexts", []), context_name, "context")
    cluster = _named(kubeconfig.get("clusters", []), context.get("cluster", ""), "cluster")
    user = (
        _named(kubeconfig.get("users", []), context["user"], "user")
        if context.get("user")
        else {}
    )

    server = cluster.get("server")
    if not isinstance(server, str) or not server:
        raise KubeJobManagerError(f"cluster {context.get('cluster')!r} has no server")

    try:
        token = user.get("token")
        if not token and user.get("tokenFile"):
            token = Path(user["tokenFile"]).expanduser().read_text(encoding="utf-8").strip()

        if cluster.get("insecure-skip-tls-verify"):
            verify: ssl.SSLContext | bool = False
        else:
            verify = _ssl_context(
                _read_data_or_file(cluster, "certificate-authority"),
                _read_data_or_file(user, "client-certificate"),
                _read_data_or_file(user, "client-key"),
            )
    except (OSError, ssl.SSLError, ValueError) as e:
        raise KubeJobManagerError(f"Invalid credentials in kubeconfig {path}: {e}") from e

    return ClusterAccess(server=server.rstrip("/"), token=token, verify=verify)


def in_cluster_access(service_account_dir: Path = SERVICE_ACCOUNT_DIR) -> ClusterAccess:
    """Resolve cluster access from the pod's service account.

    Raises:
        KubeJobManagerError: If not running inside a cluster.
    """
    host = os.getenv("KUBERNETES_SERVICE_HOST")
    port = os.getenv("KUBERNETES_SERVICE_PORT", "443")
    if not host:
        raise KubeJobManagerError(
            "no kubeconfig given and KUBERNETES_SERVICE_HOST is not set; "
            "not running inside a cluster"
        )
    if ":" in host:
        host = f"[{host}]"

    try:
        token = (service_account_dir / "token").read_text(encoding="utf-8").strip()
        verify = ssl.create_default_context(cafile=str(service_account_dir / "ca.crt"))
    except (OSError, ssl.SSLError) as e:
        raise KubeJobManagerError(f"Unable to read service account credentials: {e}") from e

    return ClusterAccess(server=f"https://{host}:{port}", token=token, verify=verify)


def _section(parent: dict[str, Any], key: str, path: str | Path, where: str) -> dict[str, Any]:
    """Return the mapping under ``key``, raising if it is missing or not a mapping."""
    value = parent.get(key)
    if not isinstance(value, dict):
        raise KubeJobManagerError(f"Job template {path} has no mapping at {where}")
    return value


def load_job_template(path: str | Path) -> dict[str, Any]:
    """Load and sanity-check a Kubernetes Job template.

    Everything :func:`render_job` writes into must be absent or of the right
    shape, so a template that loads can always be rendered.

    Raises:
        KubeJobManagerError: If the file is unreadable or is not a Job with
            at least one container.
    """
    try:
        with open(path, encoding="utf-8") as f:
            template = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise KubeJobManagerError(f"Invalid YAML in job template {path}: {e}") from e
    except OSError as e:
        raise KubeJobManagerError(f"Unable to read job template {path}: {e}") from e

    if not isinstance(template, dict):
        raise KubeJobManagerError(f"Job template {path} is not a mapping")
    if template.get("kind") != "Job":
        raise KubeJobManagerError(
            f"Job template {path} has kind {template.get('kind')!r}, expected 'Job'"
        )

    if "metadata" in template:
        metadata = _section(template, "metadata", path, "metadata")
        if "labels" in metadata:
            _section(metadata, "labels", path, "metadata.labels")

    job_spec = _section(template, "spec", path, "spec")
    pod_template = _section(job_spec, "template", path, "spec.template")
    pod_spec = _section(pod_template, "spec", path, "spec.template.spec")

    containers = pod_spec.get("containers")
    if not isinstance(containers, list) or not containers:
        raise KubeJobManagerError(f"Job template {path} defines no containers")
    for index, container in enumerate(containers):
        if not isinstance(container, dict):
            raise KubeJobManagerError(f"Container {index} in job template {path} is not a mapping")
        if "env" in container and not isinstance(container["env"], list):
            raise KubeJobManagerError(
                f"Container {index} in job template {path} has an 'env' that is not a list"
            )

    return template


def job_name(job_id: str) -> str:
    """Return the Kubernetes Job name used for a Buildkite job ID."""
    name = _INVALID_NAME_CHARS.sub("-", f"{JOB_NAME_PREFIX}{job_id}".lower())
    return name[:MAX_NAME_LENGTH].rstrip("-")


def render_job(template: dict[str, Any], job_id: str, namespace: str, org: str) -> dict[str, Any]:
    """Build the Job manifest for one Buildkite job.

    The template is copied, never modified.
    """
    job = copy.deepcopy(template)

    metadata = job.setdefault("metadata", {})
    metadata.pop("generateName", None)
    metadata["name"] = job_name(job_id)
    metadata["namespace"] = namespace
    labels = metadata.setdefault("labels", {})
    labels[LABEL_JOB_ID] = job_id
    labels[LABEL_ORG] = org

    pod_spec = job["spec"]["template"]["spec"]
    for container in pod_spec.get("containers", []):
        env = container.setdefault("env", [])
        env.append({"name": ACQUIRE_JOB_ENV, "value": job_id})

    return job


class KubeJobManager:
    """Launches Kubernetes Jobs from a single template.

    Satisfies the launcher contract used by template bindings:
    ``launch_job(job_id)`` returns on success and raises on failure.
    """

    def __init__(
        self,
        template_path: str | Path,
        kubeconfig: str = "",
        namespace: str = DEFAULT_KUBE_NAMESPACE,
        timeout: int = DEFAULT_KUBE_TIMEOUT,
        org: str = "",
        access: ClusterAccess | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        """Initialize the job manager.

        Args:
            template_path: Path to the Job template YAML file.
            kubeconfig: Path to a kubeconfig file; empty selects in-cluster access.
            namespace: Namespace Jobs are created in.
            timeout: Request timeout in seconds; 0 disables it.
            org: Buildkite organization, recorded as a label on every Job.
            access: Pre-resolved cluster access, bypassing kubeconfig lookup.
            logger: Logger to use; defaults to this module's logger.

        Raises:
            KubeJobManagerError: If the template or cluster access is invalid.
        """
        self.template_path = Path(template_path)
        self.template = load_job_template(self.template_path)
        self.namespace = namespace
        self.org = org
        self.timeout = httpx.Timeout(timeout if timeout > 0 else None)
        if access is None:
            access = load_kubeconfig(kubeconfig) if kubeconfig else in_cluster_access()
        self.access = access
        self._logger = logger if logger is not None else get_logger(__name__)
        self._client: httpx.Client | None = None

    @property
    def name(self) -> str:
        return self.template_path.name

    @property
    def jobs_url(self) -> str:
        return f"{self.access.server}/apis/batch/v1/namespaces/{self.namespace}/jobs"

    def _get_client(self) -> httpx.Client:
        if self._client is None:
            headers = {"Accept": "application/json"}
            if self.access.token:
                headers["Authorization"] = f"Bearer {self.access.token}"
            self._client = httpx.Client(
                headers=headers, timeout=self.timeout, verify=self.access.verify
            )
        return self._client

    def launch_job(self, job_id: str) -> None:
        """Create the Kubernetes Job for a Buildkite job.

        Raises:
            JobLaunchError: If the API server did not accept the Job.
        """
        manifest = render_job(self.template, job_id, self.namespace, self.org)
        job_logger = ContextAdapter(self._logger, {"job_id": job_id, "template": self.name})

        try:
            response = self._get_client().post(self.jobs_url, json=manifest)
        except httpx.RequestError as e:
            raise JobLaunchError(f"creating job {manifest['metadata']['name']} failed: {e}") from e

        if response.status_code == httpx.codes.CONFLICT:
            job_logger.info("Job %s already exists, skipping", manifest["metadata"]["name"])
            return

        try:
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise JobLaunchError(
                f"creating job {manifest['metadata']['name']} failed: "
                f"HTTP {response.status_code} {response.text[:200]}"
            ) from e

        job_logger.info(
            "Launched job %s in namespace %s", manifest["metadata"]["name"], self.namespace
        )

    def close(self) -> None:
        """Close the HTTP client and release resources."""
        if self._client is not None:
            self._client.close()
            self._client = None

    def __enter__(self) -> Self:
        return self

    def __exit__(self, *args: Any) -> None:
        self.close()


__all__ = [
    "ClusterAccess",
    "JobLaunchError",
    "KubeJobManager",
    "KubeJobManagerError",
    "in_cluster_access",
    "job_name",
    "load_job_template",
    "load_kubeconfig",
    "render_job",
]
