# SPDX-FileCopyrightText: 2026 The Envprobe Authors
# SPDX-License-Identifier: Apache-2.0

"""AWS EKS detector.

A pod is on EKS when the certificate served by the in-cluster API server
carries an EKS endpoint DNS name.  Detection runs as a linear pipeline:

1. load the in-cluster Kubernetes configuration (absent: not in a cluster)
2. collect the DNS names of the API server certificate
3. match a name against the EKS endpoint suffixes (no match: plain Kubernetes)
4. resolve the AWS account with ``sts:GetCallerIdentity`` under a short deadline
5. resolve the cluster name from ``eks:ListClusters``/``eks:DescribeCluster``

Steps 4 and 5 are best effort: a slow STS call yields a partial resource
and access-denied responses leave the cluster name out.
"""

from __future__ import annotations

import concurrent.futures
import logging
import os
import re
import socket
import ssl
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional, Tuple
from urllib.parse import urlsplit

import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError, ConnectTimeoutError, ReadTimeoutError
from cryptography import x509
from kubernetes import client as k8s_client
from kubernetes import config as k8s_config
from kubernetes.config.config_exception import ConfigException
from kubernetes.config.incluster_config import SERVICE_HOST_ENV_NAME, SERVICE_PORT_ENV_NAME
from opentelemetry.sdk.resources import Resource, ResourceDetector
from opentelemetry.semconv.resource import (
    CloudPlatformValues,
    CloudProviderValues,
    ResourceAttributes,
)

from envprobe.arn import parse_arn
from envprobe.exceptions import (
    AwsApiError,
    AwsConfigError,
    DeadlineExceededError,
    KubernetesConfigError,
    NotInClusterError,
    TransportError,
)
from envprobe.resources._common import new_resource

logger = logging.getLogger(__name__)

ACCESS_DENIED = "AccessDeniedException"
DEFAULT_STS_TIMEOUT = 0.5
DEFAULT_PAGE_SIZE = 20
HTTPS_PORT = 443

_HTTPS_PREFIX = "https://"

EKS_ENDPOINT_PATTERN = re.compile(
    r"\.(?P<region>[^.]+)\.(?:eks\.amazonaws\.com|api\.aws|(?:api\.)?amazonwebservices\.com\.cn)$"
)

# A single attempt; the caller decides what a failure means.
_NO_RETRY = {"total_max_attempts": 1, "mode": "standard"}


# =========================================================================
# Collaborators
# =========================================================================


@dataclass(frozen=True)
class KubernetesClusterConfig:
    """The subset of the in-cluster configuration the detector needs."""

    host: str
    ca_cert_file: Optional[str] = None
    verify_ssl: bool = True


class TlsConnection:
    """An established TLS session to the API server."""

    def __init__(self, sock: ssl.SSLSocket) -> None:
        self._sock = sock

    def peer_certificates(self) -> List[x509.Certificate]:
        """The certificates the peer presented, leaf first.

        Read in binary form so they are available whether or not the
        chain was verified.  Runtimes without ``get_unverified_chain``
        expose the leaf only.
        """
        get_chain = getattr(self._sock, "get_unverified_chain", None)
        if get_chain is not None:
            chain = get_chain() or []
        else:
            leaf = self._sock.getpeercert(binary_form=True)
            chain = [leaf] if leaf else []
        return [x509.load_der_x509_certificate(der) for der in chain]

    def close(self) -> None:
        self._sock.close()


class EksDetectorUtils:
    """Production implementations of everything the EKS pipeline talks to.

    Tests substitute their own instance.
    """

    def __init__(self, dial_timeout: Optional[float] = 5.0) -> None:
        self.dial_timeout = dial_timeout

    def in_cluster_config(self) -> KubernetesClusterConfig:
        if not os.environ.get(SERVICE_HOST_ENV_NAME) or not os.environ.get(SERVICE_PORT_ENV_NAME):
            raise NotInClusterError(
                f"unable to load in-cluster configuration, {SERVICE_HOST_ENV_NAME} and "
                f"{SERVICE_PORT_ENV_NAME} must be defined"
            )

        configuration = k8s_client.Configuration()
        try:
            k8s_config.load_incluster_config(client_configuration=configuration)
        except ConfigException as exc:
            raise KubernetesConfigError(f"error getting Kubernetes config: {exc}") from exc

        return KubernetesClusterConfig(
            host=configuration.host,
            ca_cert_file=configuration.ssl_ca_cert,
            verify_ssl=configuration.verify_ssl,
        )

    def tls_context(self, cluster_config: KubernetesClusterConfig) -> ssl.SSLContext:
        context = ssl.create_default_context(cafile=cluster_config.ca_cert_file)
        if not cluster_config.verify_ssl:
            context.check_hostname = False
            context.verify_mode = ssl.CERT_NONE
        return context

    def dial(self, address: str, context: ssl.SSLContext) -> TlsConnection:
        host, port = split_host_port(address)
        sock = socket.create_connection((host, port), timeout=self.dial_timeout)
        try:
            tls_sock = context.wrap_socket(sock, server_hostname=host)
        except OSError:
            sock.close()
            raise
        return TlsConnection(tls_sock)

    def aws_session(self, region: str) -> boto3.Session:
        """Default AWS session, falling back to the detected region."""
        try:
            session = boto3.Session()
            if session.region_name is None:
                session = boto3.Session(region_name=region)
        except BotoCoreError as exc:
            raise AwsConfigError(f"unable to load AWS config: {exc}") from exc
        return session

    def sts_client(self, session: boto3.Session, timeout: float) -> Any:
        config = Config(retries=_NO_RETRY, connect_timeout=timeout, read_timeout=timeout)
        try:
            return session.client("sts", config=config)
        except BotoCoreError as exc:
            raise AwsConfigError(f"unable to create STS client: {exc}") from exc

    def eks_client(self, session: boto3.Session) -> Any:
        try:
            return session.client("eks", config=Config(retries=_NO_RETRY))
        except BotoCoreError as exc:
            raise AwsConfigError(f"unable to create EKS client: {exc}") from exc


# =========================================================================
# Pipeline steps
# =========================================================================


def split_host_port(address: str) -> Tuple[str, int]:
    """Split ``host[:port]`` (IPv6 hosts bracketed), defaulting to 443."""
    parts = urlsplit(f"//{address}")
    if not parts.hostname:
        raise ValueError(f"invalid address {address!r}")
    return parts.hostname, parts.port or HTTPS_PORT


def _strip_scheme(host: str) -> str:
    if host.startswith(_HTTPS_PREFIX):
        return host[len(_HTTPS_PREFIX) :]
    return host


def _dns_names(certificates: Iterable[x509.Certificate]) -> List[str]:
    names: List[str] = []
    for cert in certificates:
        try:
            san = cert.extensions.get_extension_for_class(x509.SubjectAlternativeName)
        except x509.ExtensionNotFound:
            continue
        names.extend(san.value.get_values_for_type(x509.DNSName))
    return names


def get_k8s_certificate_dns_names(cluster_config: KubernetesClusterConfig, utils: EksDetectorUtils) -> List[str]:
    """Return every DNS subject-alternative name the API server presents.

    The connection is always closed.  A close failure is reported only
    when reading the certificates succeeded.
    """
    try:
        context = utils.tls_context(cluster_config)
    except (ssl.SSLError, OSError) as exc:
        raise TransportError(f"error building TLS config: {exc}") from exc

    address = _strip_scheme(cluster_config.host)
    try:
        conn = utils.dial(address, context)
    except (OSError, ValueError) as exc:
        raise TransportError(f"error dialing {address}: {exc}") from exc

    error: Optional[Exception] = None
    names: List[str] = []
    try:
        names = _dns_names(conn.peer_certificates())
    except (OSError, ValueError) as exc:
        error = exc
    finally:
        try:
            conn.close()
        except OSError as exc:
            if error is None:
                error = exc

    if error is not None:
        raise TransportError(f"error reading certificate from {address}: {error}") from error

    return names


def detect_eks(names: Iterable[str]) -> Optional[Tuple[str, str]]:
    """Return ``(name, region)`` for the first EKS endpoint name, if any."""
    for name in names:
        match = EKS_ENDPOINT_PATTERN.search(name)
        if match:
            return name, match.group("region")
    return None


def _api_error(operation: str, exc: Exception) -> AwsApiError:
    code = None
    if isinstance(exc, ClientError):
        code = exc.response.get("Error", {}).get("Code")
    return AwsApiError(operation, code=code, message=str(exc))


def get_account_id(client: Any, timeout: float = DEFAULT_STS_TIMEOUT) -> str:
    """Resolve the AWS account ID of the current credentials.

    The call runs on a worker thread that is abandoned, not cancelled, once
    *timeout* passes; ``concurrent.futures`` still joins it at interpreter
    exit.  The STS client's connect and read timeouts are set to the same
    value (see :meth:`EksDetectorUtils.sts_client`), which bounds how long
    the request itself can keep that thread alive.  Credential resolution
    (IMDS, web identity, SSO providers) happens inside the call and is not
    bounded by those socket timeouts.

    Raises:
        DeadlineExceededError: If the call does not finish within *timeout* seconds.
        AwsApiError: If ``sts:GetCallerIdentity`` fails.
        ArnParseError: If the returned ARN is malformed.
    """
    executor = concurrent.futures.ThreadPoolExecutor(max_workers=1, thread_name_prefix="envprobe-sts")
    try:
        future = executor.submit(client.get_caller_identity)
        output = future.result(timeout=timeout)
    except concurrent.futures.TimeoutError as exc:
        raise DeadlineExceededError("sts:GetCallerIdentity", timeout) from exc
    except (ConnectTimeoutError, ReadTimeoutError) as exc:
        raise DeadlineExceededError("sts:GetCallerIdentity", timeout) from exc
    except (ClientError, BotoCoreError) as exc:
        raise _api_error("sts:GetCallerIdentity", exc) from exc
    finally:
        executor.shutdown(wait=False)

    return parse_arn(output["Arn"]).account_id


def list_eks_clusters(client: Any, page_size: int = DEFAULT_PAGE_SIZE) -> List[str]:
    """List every cluster name visible to the credentials, one page at a time."""
    paginator = client.get_paginator("list_clusters")
    clusters: List[str] = []
    try:
        for page in paginator.paginate(PaginationConfig={"PageSize": page_size}):
            clusters.extend(page.get("clusters", []))
    except (ClientError, BotoCoreError) as exc:
        raise _api_error("eks:ListClusters", exc) from exc
    return clusters


def describe_eks_cluster_endpoint(client: Any, name: str) -> str:
    try:
        output = client.describe_cluster(name=name)
    except (ClientError, BotoCoreError) as exc:
        raise _api_error("eks:DescribeCluster", exc) from exc
    return output["cluster"].get("endpoint") or ""


def find_eks_cluster_by_endpoint(
    client: Any,
    endpoint: str,
    page_size: int = DEFAULT_PAGE_SIZE,
) -> Optional[str]:
    """Return the name of the cluster serving *endpoint*, or ``None``.

    A single visible cluster is taken as the answer without describing it.
    """
    try:
        clusters = list_eks_clusters(client, page_size)
    except AwsApiError as exc:
        if exc.code == ACCESS_DENIED:
            logger.warning("Not allowed to list EKS clusters; cluster name will be omitted")
            return None
        raise

    if len(clusters) == 1:
        return clusters[0]

    wanted = endpoint.lower()
    for cluster in clusters:
        try:
            cluster_endpoint = describe_eks_cluster_endpoint(client, cluster)
        except AwsApiError as exc:
            if exc.code == ACCESS_DENIED:
                logger.debug("Not allowed to describe EKS cluster %s, skipping", cluster)
                continue
            raise

        if _strip_scheme(cluster_endpoint.lower()) == wanted:
            return cluster

    logger.debug("No EKS cluster matches endpoint %s", endpoint)
    return None


# =========================================================================
# Detector
# =========================================================================


class AwsEksResourceDetector(ResourceDetector):
    """Detects attribute values only available when running on AWS EKS."""

    def __init__(
        self,
        raise_on_error: bool = False,
        utils: Optional[EksDetectorUtils] = None,
        sts_timeout: float = DEFAULT_STS_TIMEOUT,
        page_size: int = DEFAULT_PAGE_SIZE,
    ) -> None:
        super().__init__(raise_on_error=raise_on_error)
        self.utils = utils or EksDetectorUtils()
        self.sts_timeout = sts_timeout
        self.page_size = page_size

    def detect(self) -> Resource:
        try:
            cluster_config = self.utils.in_cluster_config()
        except NotInClusterError:
            logger.debug("Not running inside a Kubernetes cluster")
            return Resource.get_empty()

        names = get_k8s_certificate_dns_names(cluster_config, self.utils)

        match = detect_eks(names)
        if match is None:
            logger.debug("Kubernetes cluster is not EKS")
            return Resource.get_empty()

        endpoint, region = match
        attrs: Dict[str, Any] = {
            ResourceAttributes.CLOUD_PROVIDER: CloudProviderValues.AWS.value,
            ResourceAttributes.CLOUD_PLATFORM: CloudPlatformValues.AWS_EKS.value,
            ResourceAttributes.CLOUD_REGION: region,
        }

        session = self.utils.aws_session(region)
        sts = self.utils.sts_client(session, self.sts_timeout)

        try:
            account_id = get_account_id(sts, self.sts_timeout)
        except DeadlineExceededError as exc:
            logger.warning("%s; reporting region only", exc)
            return new_resource(attrs)

        attrs[ResourceAttributes.CLOUD_ACCOUNT_ID] = account_id

        eks = self.utils.eks_client(session)
        cluster_name = find_eks_cluster_by_endpoint(eks, endpoint, self.page_size)
        if cluster_name:
            attrs[ResourceAttributes.K8S_CLUSTER_NAME] = cluster_name

        logger.debug("Detected EKS resource: %s", attrs)
        return new_resource(attrs)
