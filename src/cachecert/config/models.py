# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/cachecert/config/models.py

from pathlib import Path
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class OperatorSettings(BaseModel):
    """Process-wide settings, fixed once the manager starts."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    # Namespace holding the shared upstream Certificates and their secrets
    cache_namespace: str = "cert-cache"

    # Kubernetes access
    kube_context: Optional[str] = None
    in_cluster: bool = False

    # Concurrency and deadlines
    workers: int = Field(default=2, ge=1)
    request_timeout_seconds: float = Field(default=10.0, gt=0)
    reconcile_timeout_seconds: float = Field(default=30.0, gt=0)
    watch_timeout_seconds: int = Field(default=300, gt=0)

    # Fixed requeue delays
    pending_retry_seconds: float = Field(default=2.0, ge=0)
    invalid_secret_retry_seconds: float = Field(default=3.0, ge=0)

    # Backoff for failed passes
    failure_backoff_base_seconds: float = Field(default=0.05, gt=0)
    failure_backoff_max_seconds: float = Field(default=300.0, gt=0)

    # Logging
    log_dir: Optional[Path] = None
    verbose: bool = False
