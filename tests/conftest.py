# SPDX-FileCopyrightText: 2026 The Envprobe Authors
# SPDX-License-Identifier: Apache-2.0

"""Shared test fixtures for envprobe tests."""

from __future__ import annotations

import datetime
import ipaddress
import socket
import ssl
import threading
from typing import Any, Dict, List, Optional
from unittest import mock

import pytest
from botocore.exceptions import ClientError
from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.x509.oid import ExtendedKeyUsageOID, NameOID

from envprobe.resources.eks import EksDetectorUtils, KubernetesClusterConfig, TlsConnection

TEST_HOST = "192.0.2.1:443"


def _client_error(code: str, operation: str = "Operation") -> ClientError:
    """Build a botocore ClientError with the given error code."""
    return ClientError({"Error": {"Code": code, "Message": f"{code} raised"}}, operation)


CERT_KEY = ec.generate_private_key(ec.SECP256R1())


def _name(common_name: str) -> x509.Name:
    return x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, common_name)])


def _issue_certificate(
    subject: str,
    key: Any,
    issuer: Optional[x509.Certificate] = None,
    issuer_key: Optional[Any] = None,
    dns_names: Optional[List[str]] = None,
    ip_addresses: Optional[List[str]] = None,
) -> x509.Certificate:
    """Issue a certificate for *subject*; self-signed CA when *issuer* is None."""
    now = datetime.datetime.now(datetime.timezone.utc)
    is_ca = issuer is None
    builder = (
        x509.CertificateBuilder()
        .subject_name(_name(subject))
        .issuer_name(issuer.subject if issuer is not None else _name(subject))
        .public_key(key.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(now - datetime.timedelta(days=1))
        .not_valid_after(now + datetime.timedelta(days=1))
        .add_extension(x509.BasicConstraints(ca=is_ca, path_length=None), critical=True)
        .add_extension(x509.SubjectKeyIdentifier.from_public_key(key.public_key()), critical=False)
        .add_extension(
            x509.KeyUsage(
                digital_signature=not is_ca,
                content_commitment=False,
                key_encipherment=False,
                data_encipherment=False,
                key_agreement=False,
                key_cert_sign=is_ca,
                crl_sign=is_ca,
                encipher_only=False,
                decipher_only=False,
            ),
            critical=True,
        )
    )
    if issuer is not None:
        builder = builder.add_extension(
            x509.AuthorityKeyIdentifier.from_issuer_public_key(issuer.public_key()), critical=False
        ).add_extension(x509.ExtendedKeyUsage([ExtendedKeyUsageOID.SERVER_AUTH]), critical=False)
    alt_names: List[x509.GeneralName] = [x509.DNSName(name) for name in dns_names or []]
    alt_names += [x509.IPAddress(ipaddress.ip_address(ip)) for ip in ip_addresses or []]
    if alt_names:
        builder = builder.add_extension(x509.SubjectAlternativeName(alt_names), critical=False)
    return builder.sign(issuer_key if issuer_key is not None else key, hashes.SHA256())


def _certificate(dns_names: List[str]) -> x509.Certificate:
    """A self-signed certificate carrying *dns_names* plus an IP SAN."""
    return _issue_certificate("kube-apiserver", CERT_KEY, dns_names=dns_names, ip_addresses=["192.0.2.1"])


def _make_conn(dns_names: List[str], close_error: Optional[Exception] = None) -> mock.MagicMock:
    conn = mock.MagicMock(spec=TlsConnection)
    conn.peer_certificates.return_value = [_certificate(dns_names)]
    if close_error is not None:
        conn.close.side_effect = close_error
    return conn


def _make_eks_client(pages: List[Dict[str, Any]], describe: Optional[Any] = None) -> mock.MagicMock:
    """An EKS client whose ``list_clusters`` paginator yields *pages*."""
    client = mock.MagicMock()
    client.get_paginator.return_value.paginate.return_value = iter(pages)
    if describe is not None:
        client.describe_cluster.side_effect = describe
    return client


@pytest.fixture
def sts_client():
    client = mock.MagicMock()
    client.get_caller_identity.return_value = {
        "Arn": "arn:aws:iam:eu-west-1:0123456789012:role/test",
        "Account": "0123456789012",
    }
    return client


@pytest.fixture
def eks_utils(sts_client):
    """Detector utils that report an in-cluster host; dial is left to the test."""
    utils = mock.MagicMock(spec=EksDetectorUtils)
    utils.in_cluster_config.return_value = KubernetesClusterConfig(host=f"https://{TEST_HOST}")
    utils.sts_client.return_value = sts_client
    return utils


@pytest.fixture
def client_error():
    return _client_error


@pytest.fixture
def make_conn():
    return _make_conn


@pytest.fixture
def make_eks_client():
    return _make_eks_client


@pytest.fixture
def certificate():
    return _certificate


def _pem(cert: x509.Certificate) -> bytes:
    return cert.public_bytes(serialization.Encoding.PEM)


class LocalTlsServer:
    """A TLS listener on 127.0.0.1 presenting a CA-issued API server certificate."""

    def __init__(self, tmp_path, dns_names: List[str]) -> None:
        ca_key = ec.generate_private_key(ec.SECP256R1())
        ca = _issue_certificate("envprobe-test-ca", ca_key)
        leaf_key = ec.generate_private_key(ec.SECP256R1())
        leaf = _issue_certificate(
            "kube-apiserver",
            leaf_key,
            issuer=ca,
            issuer_key=ca_key,
            dns_names=dns_names,
            ip_addresses=["127.0.0.1"],
        )

        self.ca_file = str(tmp_path / "ca.crt")
        cert_file = tmp_path / "apiserver.crt"
        key_file = tmp_path / "apiserver.key"
        (tmp_path / "ca.crt").write_bytes(_pem(ca))
        cert_file.write_bytes(_pem(leaf))
        key_file.write_bytes(
            leaf_key.private_bytes(
                serialization.Encoding.PEM,
                serialization.PrivateFormat.PKCS8,
                serialization.NoEncryption(),
            )
        )

        self._context = ssl.SSLContext(ssl.PROTOCOL_TLS_SERVER)
        self._context.load_cert_chain(str(cert_file), str(key_file))

        self._listener = socket.create_server(("127.0.0.1", 0))
        self._listener.settimeout(0.1)
        self.address = f"127.0.0.1:{self._listener.getsockname()[1]}"
        self._stop = threading.Event()
        self._thread = threading.Thread(target=self._serve, daemon=True)

    def _serve(self) -> None:
        while not self._stop.is_set():
            try:
                sock, _ = self._listener.accept()
            except socket.timeout:
                continue
            except OSError:
                return
            with sock:
                sock.settimeout(5)
                try:
                    with self._context.wrap_socket(sock, server_side=True) as tls:
                        tls.recv(1)
                except OSError:
                    pass

    def start(self) -> LocalTlsServer:
        self._thread.start()
        return self

    def stop(self) -> None:
        self._stop.set()
        self._thread.join(timeout=5)
        self._listener.close()


@pytest.fixture
def tls_server(tmp_path):
    """A running local API server stand-in whose certificate carries EKS names."""
    server = LocalTlsServer(tmp_path, ["abc123.eu-west-1.eks.amazonaws.com", "kubernetes"]).start()
    yield server
    server.stop()
