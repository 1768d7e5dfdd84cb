# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/cachecert/k8s/store.py

from __future__ import annotations

import json
import logging
import threading
from typing import Any, Dict, Iterator, List, Optional, Protocol, Set, Tuple

import urllib3
from kubernetes import client, config, watch
from kubernetes.client.rest import ApiException

from cachecert.api.constants import SECRETS, ResourceKind
from cachecert.controllers.errors import (
    AlreadyExistsError,
    ConflictError,
    NotFoundError,
    StoreError,
    WatchExpiredError,
)
from cachecert.runtime.deadline import Deadline

log = logging.getLogger("cachecert")

MERGE_PATCH = "application/merge-patch+json"

Obj = Dict[str, Any]


class Store(Protocol):
    def get(self, kind: ResourceKind, namespace: str, name: str, *, timeout: Optional[float] = None) -> Obj: ...

    def list(
        self, kind: ResourceKind, namespace: Optional[str] = None, *, timeout: Optional[float] = None
    ) -> Tuple[List[Obj], str]: ...

    def create(self, kind: ResourceKind, obj: Obj, *, timeout: Optional[float] = None) -> Obj: ...

    def replace(self, kind: ResourceKind, obj: Obj, *, timeout: Optional[float] = None) -> Obj: ...

    def replace_status(self, kind: ResourceKind, obj: Obj, *, timeout: Optional[float] = None) -> Obj: ...

    def patch_status(
        self, kind: ResourceKind, namespace: str, name: str, status: Obj, *, timeout: Optional[float] = None
    ) -> Obj: ...

    def watch(
        self,
        kind: ResourceKind,
        namespace: Optional[str] = None,
        *,
        resource_version: Optional[str] = None,
        timeout_seconds: Optional[int] = None,
        stop: Optional[threading.Event] = None,
    ) -> Iterator[Tuple[str, Obj]]: ...

    def close(self) -> None: ...


def _api_error(exc: ApiException, what: str) -> StoreError | NotFoundError:
    reason = ""
    try:
        reason = (json.loads(exc.body or "{}") or {}).get("reason", "")
    except (TypeError, ValueError):
        pass

    msg = f"{what}: {exc.status} {exc.reason}"
    if exc.status == 404:
        return NotFoundError(msg)
    if exc.status == 409:
        if reason == "AlreadyExists":
            return AlreadyExistsError(msg)
        return ConflictError(msg)
    if exc.status == 410:
        return WatchExpiredError(msg)
    return StoreError(msg)


def _meta(obj: Obj) -> Tuple[str, str]:
    meta = obj.get("metadata") or {}
    return meta.get("namespace", ""), meta.get("name", "")


class KubernetesStore:
    """
    Store backed by the kubernetes API server.

    Secrets go through CoreV1Api, everything else through CustomObjectsApi.
    All objects are exchanged as plain JSON dicts.
    """

    def __init__(
        self,
        *,
        api_client: Optional[client.ApiClient] = None,
        request_timeout: Optional[float] = 10.0,
    ):
        self.api_client = api_client or client.ApiClient()
        self.core = client.CoreV1Api(self.api_client)
        self.custom = client.CustomObjectsApi(self.api_client)
        self.request_timeout = request_timeout
        self._watches: Set[watch.Watch] = set()
        self._watches_lock = threading.Lock()

    @classmethod
    def from_config(
        cls,
        *,
        kube_context: Optional[str] = None,
        in_cluster: bool = False,
        request_timeout: Optional[float] = 10.0,
    ) -> "KubernetesStore":
        if in_cluster:
            config.load_incluster_config()
        elif kube_context:
            config.load_kube_config(context=kube_context)
        else:
            config.load_kube_config()
        return cls(request_timeout=request_timeout)

    # ------------------------
    # helpers
    # ------------------------

    def _timeout(self, timeout: Optional[float]) -> Optional[float]:
        return timeout if timeout is not None else self.request_timeout

    def _call(self, what: str, fn, *args, **kwargs) -> Any:
        try:
            return fn(*args, **kwargs)
        except ApiException as exc:
            raise _api_error(exc, what) from exc
        except urllib3.exceptions.HTTPError as exc:
            raise StoreError(f"{what}: {exc}") from exc

    @staticmethod
    def _json(resp) -> Obj:
        return json.loads(resp.data)

    # ------------------------
    # Store protocol
    # ------------------------

    def get(self, kind: ResourceKind, namespace: str, name: str, *, timeout: Optional[float] = None) -> Obj:
        what = f"get {kind.kind} {namespace}/{name}"
        t = self._timeout(timeout)
        if kind == SECRETS:
            resp = self._call(
                what, self.core.read_namespaced_secret, name, namespace,
                _preload_content=False, _request_timeout=t,
            )
            return self._json(resp)
        return self._call(
            what, self.custom.get_namespaced_custom_object,
            kind.group, kind.version, namespace, kind.plural, name,
            _request_timeout=t,
        )

    def list(
        self, kind: ResourceKind, namespace: Optional[str] = None, *, timeout: Optional[float] = None
    ) -> Tuple[List[Obj], str]:
        what = f"list {kind.plural}"
        t = self._timeout(timeout)
        if kind == SECRETS:
            if namespace:
                fn, args = self.core.list_namespaced_secret, (namespace,)
            else:
                fn, args = self.core.list_secret_for_all_namespaces, ()
            result = self._json(self._call(what, fn, *args, _preload_content=False, _request_timeout=t))
        elif namespace:
            result = self._call(
                what, self.custom.list_namespaced_custom_object,
                kind.group, kind.version, namespace, kind.plural, _request_timeout=t,
            )
        else:
            result = self._call(
                what, self.custom.list_cluster_custom_object,
                kind.group, kind.version, kind.plural, _request_timeout=t,
            )

        items = result.get("items") or []
        # list items come back without apiVersion/kind
        for item in items:
            item.setdefault("apiVersion", kind.api_version)
            item.setdefault("kind", kind.kind)
        return items, (result.get("metadata") or {}).get("resourceVersion", "")

    def create(self, kind: ResourceKind, obj: Obj, *, timeout: Optional[float] = None) -> Obj:
        namespace, name = _meta(obj)
        what = f"create {kind.kind} {namespace}/{name}"
        t = self._timeout(timeout)
        if kind == SECRETS:
            resp = self._call(
                what, self.core.create_namespaced_secret, namespace, obj,
                _preload_content=False, _request_timeout=t,
            )
            return self._json(resp)
        return self._call(
            what, self.custom.create_namespaced_custom_object,
            kind.group, kind.version, namespace, kind.plural, obj,
            _request_timeout=t,
        )

    def replace(self, kind: ResourceKind, obj: Obj, *, timeout: Optional[float] = None) -> Obj:
        namespace, name = _meta(obj)
        what = f"replace {kind.kind} {namespace}/{name}"
        t = self._timeout(timeout)
        if kind == SECRETS:
            resp = self._call(
                what, self.core.replace_namespaced_secret, name, namespace, obj,
                _preload_content=False, _request_timeout=t,
            )
            return self._json(resp)
        return self._call(
            what, self.custom.replace_namespaced_custom_object,
            kind.group, kind.version, namespace, kind.plural, name, obj,
            _request_timeout=t,
        )

    def replace_status(self, kind: ResourceKind, obj: Obj, *, timeout: Optional[float] = None) -> Obj:
        namespace, name = _meta(obj)
        return self._call(
            f"update status of {kind.kind} {namespace}/{name}",
            self.custom.replace_namespaced_custom_object_status,
            kind.group, kind.version, namespace, kind.plural, name, obj,
            _request_timeout=self._timeout(timeout),
        )

    def patch_status(
        self, kind: ResourceKind, namespace: str, name: str, status: Obj, *, timeout: Optional[float] = None
    ) -> Obj:
        return self._call(
            f"patch status of {kind.kind} {namespace}/{name}",
            self.custom.patch_namespaced_custom_object_status,
            kind.group, kind.version, namespace, kind.plural, name, {"status": status},
            _content_type=MERGE_PATCH,
            _request_timeout=self._timeout(timeout),
        )

    def watch(
        self,
        kind: ResourceKind,
        namespace: Optional[str] = None,
        *,
        resource_version: Optional[str] = None,
        timeout_seconds: Optional[int] = None,
        stop: Optional[threading.Event] = None,
    ) -> Iterator[Tuple[str, Obj]]:
        if kind == SECRETS:
            if namespace:
                fn, args = self.core.list_namespaced_secret, (namespace,)
            else:
                fn, args = self.core.list_secret_for_all_namespaces, ()
        elif namespace:
            fn = self.custom.list_namespaced_custom_object
            args = (kind.group, kind.version, namespace, kind.plural)
        else:
            fn = self.custom.list_cluster_custom_object
            args = (kind.group, kind.version, kind.plural)

        kwargs: Dict[str, Any] = {"allow_watch_bookmarks": False}
        if resource_version:
            kwargs["resource_version"] = resource_version
        if timeout_seconds:
            kwargs["timeout_seconds"] = timeout_seconds
            # client side read timeout so a dead connection cannot block forever
            kwargs["_request_timeout"] = timeout_seconds + 30

        w = watch.Watch()
        with self._watches_lock:
            self._watches.add(w)
        what = f"watch {kind.plural}"
        try:
            for event in w.stream(fn, *args, **kwargs):
                if stop is not None and stop.is_set():
                    return
                event_type = event["type"]
                raw = event.get("raw_object") or {}
                if event_type == "ERROR":
                    if raw.get("code") == 410:
                        raise WatchExpiredError(f"{what}: {raw.get('message', 'resource version expired')}")
                    raise StoreError(f"{what}: {raw.get('message', raw)}")
                if event_type == "BOOKMARK":
                    continue
                raw.setdefault("apiVersion", kind.api_version)
                raw.setdefault("kind", kind.kind)
                yield event_type, raw
        except ApiException as exc:
            raise _api_error(exc, what) from exc
        except urllib3.exceptions.HTTPError as exc:
            raise StoreError(f"{what}: {exc}") from exc
        finally:
            w.stop()
            with self._watches_lock:
                self._watches.discard(w)

    def close(self) -> None:
        """Stop every open watch stream and release the connection pool."""
        with self._watches_lock:
            watches = list(self._watches)
        for w in watches:
            w.stop()
        self.api_client.close()


class BoundedStore:
    """
    Store wrapper that applies one reconcile pass's deadline to every call.

    The deadline is checked before each call so an expired pass never starts
    another write, and each call gets at most the time that is left.
    """

    def __init__(self, store: Store, deadline: Deadline, *, request_timeout: Optional[float] = None):
        self.store = store
        self.deadline = deadline
        self.request_timeout = request_timeout

    def _t(self, what: str) -> Optional[float]:
        self.deadline.check(what)
        return self.deadline.timeout(self.request_timeout)

    def get(self, kind: ResourceKind, namespace: str, name: str, *, timeout: Optional[float] = None) -> Obj:
        return self.store.get(kind, namespace, name, timeout=self._t(f"get {kind.kind}"))

    def list(
        self, kind: ResourceKind, namespace: Optional[str] = None, *, timeout: Optional[float] = None
    ) -> Tuple[List[Obj], str]:
        return self.store.list(kind, namespace, timeout=self._t(f"list {kind.plural}"))

    def create(self, kind: ResourceKind, obj: Obj, *, timeout: Optional[float] = None) -> Obj:
        return self.store.create(kind, obj, timeout=self._t(f"create {kind.kind}"))

    def replace(self, kind: ResourceKind, obj: Obj, *, timeout: Optional[float] = None) -> Obj:
        return self.store.replace(kind, obj, timeout=self._t(f"replace {kind.kind}"))

    def replace_status(self, kind: ResourceKind, obj: Obj, *, timeout: Optional[float] = None) -> Obj:
        return self.store.replace_status(kind, obj, timeout=self._t(f"update {kind.kind} status"))

    def patch_status(
        self, kind: ResourceKind, namespace: str, name: str, status: Obj, *, timeout: Optional[float] = None
    ) -> Obj:
        return self.store.patch_status(kind, namespace, name, status, timeout=self._t(f"patch {kind.kind} status"))

