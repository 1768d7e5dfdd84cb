# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/cachecert/api/models.py

from __future__ import annotations

import copy
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field

from .constants import CACHED_CERTIFICATES


class CachedCertificateState(str, Enum):
    PENDING = "Pending"
    SYNCED = "Synced"
    ERROR = "Error"


class _K8sModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class IssuerRef(_K8sModel):
    name: str
    kind: str
    group: Optional[str] = None

    def to_k8s(self) -> Dict[str, str]:
        ref = {"name": self.name, "kind": self.kind}
        if self.group:
            ref["group"] = self.group
        return ref


class ObjectReference(_K8sModel):
    name: str
    namespace: str


class CachedCertificateSpec(_K8sModel):
    # Target secret name, defaulted to the CachedCertificate name during reconcile
    secret_name: Optional[str] = Field(default=None, alias="secretName")
    issuer_ref: IssuerRef = Field(alias="issuerRef")
    dns_names: List[str] = Field(alias="dnsNames", min_length=1)


class CachedCertificateStatus(_K8sModel):
    state: CachedCertificateState = CachedCertificateState.PENDING
    upstream_ready: bool = Field(default=False, alias="upstreamReady")
    upstream_ref: Optional[ObjectReference] = Field(default=None, alias="upstreamRef")

    def to_k8s(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True, mode="json")


class CachedCertificate(_K8sModel):
    """
    Typed view over a CachedCertificate document.

    ``metadata`` is kept as the raw dict so resourceVersion and uid survive
    a round trip through the model untouched.
    """

    metadata: Dict[str, Any]
    spec: CachedCertificateSpec
    status: CachedCertificateStatus = Field(default_factory=CachedCertificateStatus)

    @classmethod
    def from_k8s_object(cls, obj: Dict[str, Any]) -> "CachedCertificate":
        return cls.model_validate(
            {
                "metadata": copy.deepcopy(obj.get("metadata") or {}),
                "spec": obj.get("spec") or {},
                "status": obj.get("status") or {},
            }
        )

    @property
    def name(self) -> str:
        return self.metadata.get("name", "")

    @property
    def namespace(self) -> str:
        return self.metadata.get("namespace", "")

    @property
    def uid(self) -> Optional[str]:
        return self.metadata.get("uid")

    @property
    def key(self) -> Tuple[str, str]:
        return self.namespace, self.name

    def to_k8s_object(self) -> Dict[str, Any]:
        return {
            "apiVersion": CACHED_CERTIFICATES.api_version,
            "kind": CACHED_CERTIFICATES.kind,
            "metadata": copy.deepcopy(self.metadata),
            "spec": self.spec.model_dump(by_alias=True, exclude_none=True, mode="json"),
            "status": self.status.to_k8s(),
        }
