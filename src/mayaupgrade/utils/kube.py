"""
Shared helpers for configuring and using the Kubernetes Python client.
"""
from __future__ import annotations

import logging
from typing import Dict, List, Literal, Optional

from kubernetes import client, config as kube_config


class KubernetesConfigurationError(RuntimeError):
    """Raised when the Kubernetes client cannot be configured."""


def configure_kube_client(
    logger: Optional[logging.Logger] = None,
    *,
    kubeconfig_path: Optional[str] = None,
) -> Literal["in-cluster", "kubeconfig"]:
    """
    Configure the Kubernetes client for an upgrade run.

    The upgrade job normally runs inside the cluster with a service account,
    so in-cluster credentials are tried first. A local kubeconfig is only
    consulted when the in-cluster files are absent, which keeps the CLI
    usable from a workstation.

    Args:
        logger: Logger used to report which credentials were picked up.
        kubeconfig_path: Explicit kubeconfig file. When given, nothing else
            is tried.

    Returns:
        A string describing the configuration source used.

    Raises:
        KubernetesConfigurationError: If no usable credentials were found.
    """
    log = logger or logging.getLogger(__name__)

    if kubeconfig_path:
        try:
            kube_config.load_kube_config(config_file=kubeconfig_path)
        except kube_config.ConfigException as exc:
            message = f"Could not load kubeconfig '{kubeconfig_path}'."
            log.error("%s %s", message, exc)
            raise KubernetesConfigurationError(message) from exc
        log.info("Using kubeconfig at '%s'.", kubeconfig_path)
        return "kubeconfig"

    try:
        kube_config.load_incluster_config()
    except kube_config.ConfigException as incluster_error:
        log.debug("In-cluster configuration unavailable: %s", incluster_error)
    else:
        log.info("Using in-cluster service account credentials.")
        return "in-cluster"

    try:
        kube_config.load_kube_config()
    except kube_config.ConfigException as exc:
        message = (
            "Unable to configure Kubernetes client from the service account "
            "or the default kubeconfig."
        )
        log.error(message)
        raise KubernetesConfigurationError(message) from exc

    log.info("Using local kubeconfig.")
    return "kubeconfig"


def build_label_selector(labels: Dict[str, str]) -> str:
    """Turns ``{"a": "b", "c": "d"}`` into ``"a=b,c=d"``, keeping key order."""
    return ",".join(f"{k}={v}" for k, v in labels.items())


def get_pod_owner_references(
    core_v1: client.CoreV1Api,
    name: str,
    namespace: str,
) -> List[client.V1OwnerReference]:
    """
    Reads a pod and returns its owner references (possibly empty).

    Raises:
        client.ApiException: If the pod cannot be read.
    """
    pod = core_v1.read_namespaced_pod(name=name, namespace=namespace)
    return list(pod.metadata.owner_references or [])
