# SPDX-License-Identifier: MIT

"""Read-only Cluster Reader over the Kubernetes/OpenShift API.

Every query is a list/get call. Nothing is ever written to the cluster.
Client and transport exceptions are translated into the error taxonomy in
``ocp_upgrade_check.errors`` so the engine can decide between retrying,
erroring a single check, and aborting the run.
"""

from __future__ import annotations

import logging
import time
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Any, Iterator
from urllib.parse import urlparse

from kubernetes import client, config
from kubernetes.client.exceptions import ApiException
from kubernetes.config.config_exception import ConfigException
from urllib3 import exceptions as urllib3_exceptions

from ocp_upgrade_check.errors import (
    AuthError,
    CheckTimeoutError,
    ConfigError,
    ConnectivityError,
    QueryError,
)
from ocp_upgrade_check.models import (
    ApiLatency,
    ClusterIdentity,
    ClusterVersionInfo,
    EtcdMember,
    EtcdStatus,
    IngressControllerInfo,
    IngressStatus,
    MachineConfigPoolInfo,
    NodeInfo,
    NodeUsage,
    OperatorInfo,
    PendingOperation,
    PodInfo,
    VolumeInfo,
)

logger = logging.getLogger(__name__)

PENDING_POD_MIN = 5
IGNORED_WAITING_REASONS = ("ContainerCreating", "PodInitializing")


# =====================================================================
# Helpers
# =====================================================================

def _parse_cpu(val: str | int | float) -> float:
    s = str(val)
    if s.endswith("m"):
        return float(s[:-1]) / 1000
    if s.endswith("u"):
        return float(s[:-1]) / 1_000_000
    if s.endswith("n"):
        return float(s[:-1]) / 1_000_000_000
    return float(s)


def _parse_memory(val: str | int | float) -> float:
    s = str(val)
    suffixes = {
        "Ki": 1024, "Mi": 1024**2, "Gi": 1024**3, "Ti": 1024**4,
        "K": 1000, "M": 1000**2, "G": 1000**3, "T": 1000**4,
        "k": 1000, "m": 0.001,
    }
    for suffix, multiplier in sorted(suffixes.items(), key=lambda x: -len(x[0])):
        if s.endswith(suffix):
            return float(s[: -len(suffix)]) * multiplier
    return float(s)


def _condition(conditions: list[dict] | None, cond_type: str) -> dict | None:
    for cond in conditions or []:
        if cond.get("type") == cond_type:
            return cond
    return None


def _condition_true(conditions: list[dict] | None, cond_type: str) -> bool:
    cond = _condition(conditions, cond_type)
    return cond is not None and cond.get("status") == "True"


def _is_timeout(exc: BaseException | None) -> bool:
    # NewConnectionError subclasses ConnectTimeoutError but means refused/unresolvable.
    if isinstance(exc, urllib3_exceptions.NewConnectionError):
        return False
    return isinstance(exc, (urllib3_exceptions.ReadTimeoutError, urllib3_exceptions.ConnectTimeoutError))


@contextmanager
def _api_call(what: str) -> Iterator[None]:
    """Translate client, transport and payload-shape failures for ``what``."""
    try:
        yield
    except ApiException as exc:
        status = exc.status or 0
        if status in (401, 403):
            raise AuthError(f"{what}: HTTP {status} {exc.reason}") from exc
        if status == 429 or status >= 500:
            raise ConnectivityError(f"{what}: HTTP {status} {exc.reason}", fatal=False) from exc
        raise QueryError(f"{what}: HTTP {status} {exc.reason}") from exc
    except urllib3_exceptions.MaxRetryError as exc:
        if _is_timeout(exc.reason):
            raise CheckTimeoutError(f"{what}: timed out ({exc.reason})") from exc
        if isinstance(exc.reason, urllib3_exceptions.ProtocolError):
            raise ConnectivityError(f"{what}: connection dropped ({exc.reason})", fatal=False) from exc
        raise ConnectivityError(f"{what}: endpoint unreachable ({exc.reason})", fatal=True) from exc
    except urllib3_exceptions.NewConnectionError as exc:
        raise ConnectivityError(f"{what}: endpoint unreachable ({exc})", fatal=True) from exc
    except (urllib3_exceptions.ReadTimeoutError, urllib3_exceptions.ConnectTimeoutError) as exc:
        raise CheckTimeoutError(f"{what}: timed out ({exc})") from exc
    except urllib3_exceptions.SSLError as exc:
        raise ConnectivityError(f"{what}: TLS failure ({exc})", fatal=True) from exc
    except urllib3_exceptions.ProtocolError as exc:
        raise ConnectivityError(f"{what}: connection dropped ({exc})", fatal=False) from exc
    except (KeyError, TypeError, AttributeError, ValueError) as exc:
        raise QueryError(f"{what}: unexpected response shape ({exc!r})") from exc


# =====================================================================
# Connection
# =====================================================================

def connect(
    kubeconfig: str | None = None,
    context: str | None = None,
    api_url: str | None = None,
    api_token: str | None = None,
    verify_ssl: bool = True,
    cluster_name: str | None = None,
) -> tuple[client.ApiClient, ClusterIdentity]:
    """Build an API client and the identity of the cluster it targets.

    An explicit ``api_url``/``api_token`` pair wins; half a pair is a
    ``ConfigError``. Otherwise the kubeconfig (optionally a specific
    context) is loaded, falling back to the in-cluster service account.
    """
    if bool(api_url) != bool(api_token):
        missing = "api_token" if api_url else "api_url"
        raise ConfigError(f"api_url and api_token must be given together; {missing} is missing")
    if api_url and api_token:
        configuration = client.Configuration()
        configuration.host = api_url
        configuration.api_key = {"authorization": f"Bearer {api_token}"}
        configuration.verify_ssl = verify_ssl
        name = cluster_name or urlparse(api_url).hostname or api_url
        return client.ApiClient(configuration), ClusterIdentity(name, api_url)

    try:
        try:
            config.load_kube_config(config_file=kubeconfig, context=context)
        except ConfigException:
            config.load_incluster_config()
    except ConfigException as exc:
        raise ConfigError(f"no usable kubeconfig or in-cluster configuration: {exc}") from exc

    api_client = client.ApiClient()
    endpoint = api_client.configuration.host or ""
    name = cluster_name
    if not name:
        try:
            contexts, active_ctx = config.list_kube_config_contexts(config_file=kubeconfig)
            chosen = next((c for c in contexts if c.get("name") == context), active_ctx) if context else active_ctx
            name = (chosen or {}).get("context", {}).get("cluster", "")
        except ConfigException:
            name = ""
    return api_client, ClusterIdentity(name or urlparse(endpoint).hostname or "in-cluster", endpoint)


# =====================================================================
# Reader
# =====================================================================

class KubeClusterReader:
    """Cluster Reader bound to one API client for the duration of a run."""

    def __init__(self, api_client: client.ApiClient, request_timeout: float | None = None,
                 clock=time.monotonic) -> None:
        self.api_client = api_client
        self.request_timeout = request_timeout
        self._clock = clock
        self._core = client.CoreV1Api(api_client)
        self._custom = client.CustomObjectsApi(api_client)
        self._certificates = client.CertificatesV1Api(api_client)
        self._version = client.VersionApi(api_client)

    @contextmanager
    def deadline(self, seconds: float) -> Iterator[None]:
        """Bound every API request issued inside the block to ``seconds``."""
        previous = self.request_timeout
        self.request_timeout = seconds
        try:
            yield
        finally:
            self.request_timeout = previous

    def _kw(self) -> dict[str, Any]:
        return {"_request_timeout": self.request_timeout} if self.request_timeout else {}

    # ---- control plane ------------------------------------------------

    def api_latency(self) -> ApiLatency:
        with _api_call("API version"):
            start = self._clock()
            info = self._version.get_code(**self._kw())
            latency_ms = (self._clock() - start) * 1000
            return ApiLatency(latency_ms=latency_ms, server_version=info.git_version or "")

    def cluster_version(self) -> ClusterVersionInfo:
        with _api_call("clusterversion"):
            cv = self._custom.get_cluster_custom_object(
                "config.openshift.io", "v1", "clusterversions", "version", **self._kw())
            spec = cv.get("spec", {})
            status = cv["status"]
            history = status.get("history") or []
            desired = status.get("desired") or {}
            conditions = status.get("conditions") or []
            failing = _condition(conditions, "Failing")
            current = next((h for h in history if h.get("state") == "Completed"), history[0] if history else {})
            return ClusterVersionInfo(
                version=current.get("version") or desired.get("version", ""),
                channel=spec.get("channel", ""),
                desired_version=desired.get("version", ""),
                available_updates=tuple(u["version"] for u in status.get("availableUpdates") or []),
                failing=failing is not None and failing.get("status") == "True",
                failing_message=(failing or {}).get("message", ""),
                progressing=_condition_true(conditions, "Progressing"),
                history_state=history[0].get("state", "") if history else "",
            )

    def cluster_operators(self) -> list[OperatorInfo]:
        with _api_call("clusteroperators"):
            resp = self._custom.list_cluster_custom_object(
                "config.openshift.io", "v1", "clusteroperators", **self._kw())
            operators = []
            for co in resp["items"]:
                conditions = co.get("status", {}).get("conditions") or []
                versions = co.get("status", {}).get("versions") or []
                degraded = _condition(conditions, "Degraded")
                operators.append(OperatorInfo(
                    name=co["metadata"]["name"],
                    available=_condition_true(conditions, "Available"),
                    progressing=_condition_true(conditions, "Progressing"),
                    degraded=degraded is not None and degraded.get("status") == "True",
                    version=next((v.get("version", "") for v in versions if v.get("name") == "operator"), ""),
                    message=(degraded or {}).get("message", "") if degraded and degraded.get("status") == "True" else "",
                ))
            return operators

    def etcd_status(self) -> EtcdStatus:
        with _api_call("etcd pods"):
            pods = self._core.list_namespaced_pod(
                "openshift-etcd", label_selector="app=etcd", **self._kw()).items
            members = []
            for pod in pods:
                ready = any(c.type == "Ready" and c.status == "True" for c in pod.status.conditions or [])
                members.append(EtcdMember(
                    name=pod.metadata.name,
                    phase=pod.status.phase or "Unknown",
                    ready=ready,
                    node=pod.spec.node_name or "",
                    restarts=sum(cs.restart_count or 0 for cs in pod.status.container_statuses or []),
                ))
        members_available = None
        message = ""
        try:
            with _api_call("etcd operator"):
                etcd = self._custom.get_cluster_custom_object(
                    "operator.openshift.io", "v1", "etcds", "cluster", **self._kw())
                cond = _condition(etcd.get("status", {}).get("conditions"), "EtcdMembersAvailable")
                if cond is not None:
                    members_available = cond.get("status") == "True"
                    message = cond.get("message", "")
        except QueryError as exc:
            logger.debug("etcd operator status unavailable: %s", exc)
        return EtcdStatus(members=tuple(members), members_available=members_available, message=message)

    # ---- nodes and workloads -----------------------------------------

    def nodes(self) -> list[NodeInfo]:
        with _api_call("nodes"):
            result = []
            for node in self._core.list_node(**self._kw()).items:
                ready_cond = next((c for c in node.status.conditions or [] if c.type == "Ready"), None)
                labels = node.metadata.labels or {}
                result.append(NodeInfo(
                    name=node.metadata.name,
                    ready=ready_cond is not None and ready_cond.status == "True",
                    unschedulable=bool(node.spec.unschedulable),
                    roles=tuple(sorted(k.split("/", 1)[1] for k in labels
                                       if k.startswith("node-role.kubernetes.io/"))),
                    reason=(ready_cond.reason or "") if ready_cond is not None else "NoReadyCondition",
                ))
            return result

    def critical_pods(self, namespaces: tuple[str, ...]) -> list[PodInfo]:
        result = []
        for namespace in namespaces:
            with _api_call(f"pods in {namespace}"):
                try:
                    pods = self._core.list_namespaced_pod(namespace, **self._kw()).items
                except ApiException as exc:
                    if exc.status == 404:
                        logger.debug("namespace %s not found, skipping", namespace)
                        continue
                    raise
                for pod in pods:
                    result.append(_pod_info(pod))
        return result

    def volumes(self) -> list[VolumeInfo]:
        with _api_call("persistent volumes"):
            pvs = self._core.list_persistent_volume(**self._kw()).items
            pvcs = self._core.list_persistent_volume_claim_for_all_namespaces(**self._kw()).items
            result = [VolumeInfo("PV", pv.metadata.name, pv.status.phase or "Unknown") for pv in pvs]
            result.extend(
                VolumeInfo("PVC", pvc.metadata.name, pvc.status.phase or "Unknown", pvc.metadata.namespace)
                for pvc in pvcs
            )
            return result

    def node_usage(self) -> list[NodeUsage]:
        with _api_call("node metrics"):
            allocatable = {
                node.metadata.name: node.status.allocatable or {}
                for node in self._core.list_node(**self._kw()).items
            }
            metrics = self._custom.list_cluster_custom_object(
                "metrics.k8s.io", "v1beta1", "nodes", **self._kw())
            result = []
            for item in metrics["items"]:
                name = item["metadata"]["name"]
                usage = item.get("usage", {})
                alloc = allocatable.get(name, {})
                alloc_cpu = _parse_cpu(alloc.get("cpu", "0"))
                alloc_mem = _parse_memory(alloc.get("memory", "0"))
                if not alloc_cpu or not alloc_mem:
                    continue
                result.append(NodeUsage(
                    name=name,
                    cpu_pct=_parse_cpu(usage.get("cpu", "0")) / alloc_cpu * 100,
                    memory_pct=_parse_memory(usage.get("memory", "0")) / alloc_mem * 100,
                ))
            return result

    def pending_operations(self) -> list[PendingOperation]:
        now = datetime.now(timezone.utc)
        result = []
        with _api_call("pending pods"):
            pods = self._core.list_pod_for_all_namespaces(
                field_selector="status.phase=Pending", **self._kw()).items
            for pod in pods:
                created = pod.metadata.creation_timestamp
                age = (now - created).total_seconds() / 60 if created else 0.0
                if age < PENDING_POD_MIN:
                    continue
                reason = next((c.reason for c in pod.status.conditions or []
                               if c.type == "PodScheduled" and c.status == "False"), "")
                result.append(PendingOperation("Pod", pod.metadata.name, pod.metadata.namespace,
                                               round(age, 1), reason or ""))
        with _api_call("certificate signing requests"):
            for csr in self._certificates.list_certificate_signing_request(**self._kw()).items:
                if csr.status and csr.status.conditions:
                    continue
                created = csr.metadata.creation_timestamp
                age = (now - created).total_seconds() / 60 if created else 0.0
                result.append(PendingOperation("CSR", csr.metadata.name, age_minutes=round(age, 1),
                                               detail=csr.spec.signer_name or ""))
        with _api_call("install plans"):
            try:
                plans = self._custom.list_cluster_custom_object(
                    "operators.coreos.com", "v1alpha1", "installplans", **self._kw())["items"]
            except ApiException as exc:
                if exc.status != 404:
                    raise
                plans = []
            for plan in plans:
                if plan.get("spec", {}).get("approved", True):
                    continue
                meta = plan["metadata"]
                result.append(PendingOperation("InstallPlan", meta["name"], meta.get("namespace", ""),
                                               detail="awaiting manual approval"))
        return result

    # ---- networking and rollout --------------------------------------

    def ingress_status(self) -> IngressStatus:
        with _api_call("ingress controllers"):
            resp = self._custom.list_namespaced_custom_object(
                "operator.openshift.io", "v1", "openshift-ingress-operator", "ingresscontrollers",
                **self._kw())
            controllers = []
            for ic in resp["items"]:
                conditions = ic.get("status", {}).get("conditions") or []
                degraded = _condition(conditions, "Degraded")
                controllers.append(IngressControllerInfo(
                    name=ic["metadata"]["name"],
                    available=_condition_true(conditions, "Available"),
                    degraded=degraded is not None and degraded.get("status") == "True",
                    message=(degraded or {}).get("message", ""),
                ))
        with _api_call("dns operator"):
            try:
                dns = self._custom.get_cluster_custom_object(
                    "config.openshift.io", "v1", "clusteroperators", "dns", **self._kw())
            except ApiException as exc:
                if exc.status != 404:
                    raise
                dns = None
            if dns is None:
                return IngressStatus(controllers=tuple(controllers))
            conditions = dns.get("status", {}).get("conditions") or []
            degraded = _condition(conditions, "Degraded")
            return IngressStatus(
                controllers=tuple(controllers),
                dns_available=_condition_true(conditions, "Available"),
                dns_degraded=degraded is not None and degraded.get("status") == "True",
                dns_message=(degraded or {}).get("message", ""),
            )

    def machine_config_pools(self) -> list[MachineConfigPoolInfo]:
        with _api_call("machineconfigpools"):
            resp = self._custom.list_cluster_custom_object(
                "machineconfiguration.openshift.io", "v1", "machineconfigpools", **self._kw())
            pools = []
            for mcp in resp["items"]:
                status = mcp.get("status", {})
                conditions = status.get("conditions") or []
                pools.append(MachineConfigPoolInfo(
                    name=mcp["metadata"]["name"],
                    machine_count=int(status.get("machineCount", 0)),
                    updated_count=int(status.get("updatedMachineCount", 0)),
                    degraded_count=int(status.get("degradedMachineCount", 0)),
                    updated=_condition_true(conditions, "Updated"),
                    updating=_condition_true(conditions, "Updating"),
                    degraded=_condition_true(conditions, "Degraded"),
                ))
            return pools


def _pod_info(pod: Any) -> PodInfo:
    status = pod.status
    waiting = ""
    restarts = 0
    for cs in status.container_statuses or []:
        restarts += cs.restart_count or 0
        if not waiting and cs.state and cs.state.waiting:
            reason = cs.state.waiting.reason or ""
            if reason and reason not in IGNORED_WAITING_REASONS:
                waiting = reason
    ready = any(c.type == "Ready" and c.status == "True" for c in status.conditions or [])
    return PodInfo(
        name=pod.metadata.name,
        namespace=pod.metadata.namespace,
        phase=status.phase or "Unknown",
        ready=ready,
        restarts=restarts,
        waiting_reason=waiting,
    )
