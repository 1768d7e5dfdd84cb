# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/cachecert/cli/app.py
from __future__ import annotations

from pathlib import Path
from typing import List, Optional

import typer

from cachecert.config.loader import load_settings
from cachecert.controllers.naming import upstream_certificate_name
from cachecert.k8s.store import KubernetesStore
from cachecert.logging.log import init_logging
from cachecert.runtime.manager import Manager


# ------------------------------------------------------------------------------
# CLI setup
# ------------------------------------------------------------------------------

app = typer.Typer(help="Cached Certificate Operator")


@app.command()
def run(
    config: Optional[Path] = typer.Option(None, "--config", "-c", help="Operator settings YAML"),
    cache_namespace: Optional[str] = typer.Option(None, help="Namespace holding the shared upstream Certificates"),
    kube_context: Optional[str] = typer.Option(None, help="Kubeconfig context to use"),
    in_cluster: Optional[bool] = typer.Option(None, "--in-cluster/--no-in-cluster", help="Use the pod service account"),
    workers: Optional[int] = typer.Option(None, help="Concurrent CachedCertificate reconciles"),
    log_dir: Optional[Path] = typer.Option(None, help="Also write a full trace log here"),
    verbose: Optional[bool] = typer.Option(None, "--verbose/--quiet", "-v", help="Debug logging on the console"),
):
    """
    Run the operator until interrupted.
    """
    settings = load_settings(
        config,
        overrides={
            "cache_namespace": cache_namespace,
            "kube_context": kube_context,
            "in_cluster": in_cluster,
            "workers": workers,
            "log_dir": log_dir,
            "verbose": verbose,
        },
    )

    logger, _run_id, _log_path = init_logging(base_dir=settings.log_dir, verbose=settings.verbose)
    logger.debug(f"settings={settings.model_dump()}")

    store = KubernetesStore.from_config(
        kube_context=settings.kube_context,
        in_cluster=settings.in_cluster,
        request_timeout=settings.request_timeout_seconds,
    )
    try:
        Manager(store, settings).run()
    finally:
        store.close()


@app.command("upstream-name")
def upstream_name(
    dns_names: List[str] = typer.Argument(..., help="DNS names of the CachedCertificate"),
):
    """
    Print the upstream Certificate name a set of DNS names maps to.
    """
    typer.echo(upstream_certificate_name(*dns_names))


if __name__ == "__main__":
    app()
