# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/cachecert/api/constants.py

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class ResourceKind:
    group: str
    version: str
    kind: str
    plural: str

    @property
    def api_version(self) -> str:
        if not self.group:
            return self.version
        return f"{self.group}/{self.version}"


# CachedCertificate CRD coordinates
GROUP = "cache.weavelab.xyz"
VERSION = "v1alpha1"

# cert-manager.io CRD coordinates
CERT_MANAGER_GROUP = "cert-manager.io"
CERT_MANAGER_VERSION = "v1"

CACHED_CERTIFICATES = ResourceKind(GROUP, VERSION, "CachedCertificate", "cachedcertificates")
CERTIFICATES = ResourceKind(CERT_MANAGER_GROUP, CERT_MANAGER_VERSION, "Certificate", "certificates")
SECRETS = ResourceKind("", "v1", "Secret", "secrets")

# Label used to find secrets created by this operator
SYNCED_LABEL_KEY = f"{GROUP}/synced-from-cache"

# "<namespace>/<name>" of the CachedCertificate a secret was copied for
SOURCE_ANNOTATION_KEY = f"{GROUP}/source"

# Set by cert-manager on every secret it issues
CERTIFICATE_NAME_ANNOTATION_KEY = "cert-manager.io/certificate-name"

# Data keys cert-manager writes into a TLS secret
TLS_CERT_KEY = "tls.crt"
TLS_PRIVATE_KEY_KEY = "tls.key"

UPSTREAM_NAME_PREFIX = "cc-"
