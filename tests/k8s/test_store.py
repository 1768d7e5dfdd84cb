import json
import threading
from types import SimpleNamespace

import pytest
import urllib3
from kubernetes import client
from kubernetes.client.rest import ApiException

from cachecert.api.constants import CACHED_CERTIFICATES, CERTIFICATES, SECRETS
from cachecert.controllers.errors import (
    AlreadyExistsError,
    ConflictError,
    DeadlineExceededError,
    NotFoundError,
    StoreError,
    WatchExpiredError,
)
from cachecert.k8s import store as store_mod
from cachecert.k8s.store import MERGE_PATCH, BoundedStore, KubernetesStore
from cachecert.runtime.deadline import Deadline


class FakeApi:
    """Records calls; returns or raises whatever is queued per method name."""

    def __init__(self, **responses):
        self.responses = responses
        self.calls = []

    def __getattr__(self, name):
        def _call(*args, **kwargs):
            self.calls.append((name, args, kwargs))
            resp = self.responses[name]
            if isinstance(resp, Exception):
                raise resp
            return resp

        return _call


def _raw(obj):
    return SimpleNamespace(data=json.dumps(obj).encode())


def _api_exc(status, reason="", body_reason=None):
    exc = ApiException(status=status, reason=reason)
    exc.body = json.dumps({"reason": body_reason}) if body_reason else None
    return exc


@pytest.fixture
def kstore():
    return KubernetesStore(api_client=client.ApiClient(), request_timeout=7.0)


def test_secrets_go_through_core_api(kstore):
    secret = {"metadata": {"name": "s", "namespace": "testing"}, "data": {"tls.crt": "eA=="}}
    kstore.core = FakeApi(read_namespaced_secret=_raw(secret))

    assert kstore.get(SECRETS, "testing", "s") == secret

    [(name, args, kwargs)] = kstore.core.calls
    assert args == ("s", "testing")
    assert kwargs == {"_preload_content": False, "_request_timeout": 7.0}


def test_custom_objects_go_through_custom_api(kstore):
    kstore.custom = FakeApi(get_namespaced_custom_object={"metadata": {"name": "c"}})

    kstore.get(CERTIFICATES, "cert-cache", "c", timeout=2.0)

    [(_, args, kwargs)] = kstore.custom.calls
    assert args == ("cert-manager.io", "v1", "cert-cache", "certificates", "c")
    assert kwargs["_request_timeout"] == 2.0


def test_list_fills_type_meta(kstore):
    kstore.custom = FakeApi(
        list_cluster_custom_object={"metadata": {"resourceVersion": "42"}, "items": [{"metadata": {"name": "a"}}]}
    )

    items, rv = kstore.list(CACHED_CERTIFICATES)

    assert rv == "42"
    assert items[0]["apiVersion"] == "cache.weavelab.xyz/v1alpha1"
    assert items[0]["kind"] == "CachedCertificate"


def test_list_secrets_in_all_namespaces(kstore):
    kstore.core = FakeApi(list_secret_for_all_namespaces=_raw({"metadata": {"resourceVersion": "7"}, "items": []}))

    assert kstore.list(SECRETS) == ([], "7")


def test_patch_status_is_a_merge_patch(kstore):
    kstore.custom = FakeApi(patch_namespaced_custom_object_status={})

    kstore.patch_status(CACHED_CERTIFICATES, "testing", "my-cert", {"state": "Pending"})

    [(_, args, kwargs)] = kstore.custom.calls
    assert args[-1] == {"status": {"state": "Pending"}}
    assert kwargs["_content_type"] == MERGE_PATCH


@pytest.mark.parametrize(
    "exc, expected",
    [
        (_api_exc(404, "Not Found"), NotFoundError),
        (_api_exc(409, "Conflict", "AlreadyExists"), AlreadyExistsError),
        (_api_exc(409, "Conflict", "Conflict"), ConflictError),
        (_api_exc(410, "Gone"), WatchExpiredError),
        (_api_exc(500, "Internal Server Error"), StoreError),
        (urllib3.exceptions.ProtocolError("connection reset"), StoreError),
    ],
)
def test_api_errors_are_translated(kstore, exc, expected):
    kstore.custom = FakeApi(create_namespaced_custom_object=exc)

    with pytest.raises(expected) as info:
        kstore.create(CERTIFICATES, {"metadata": {"name": "c", "namespace": "cert-cache"}})

    assert "create Certificate cert-cache/c" in str(info.value)


def test_not_found_is_not_a_store_error():
    assert not issubclass(NotFoundError, StoreError)


class FakeWatch:
    def __init__(self, events):
        self.events = events
        self.stopped = False

    def stream(self, fn, *args, **kwargs):
        self.kwargs = kwargs
        yield from self.events

    def stop(self):
        self.stopped = True


def _watch_with(monkeypatch, events):
    w = FakeWatch(events)
    monkeypatch.setattr(store_mod.watch, "Watch", lambda: w)
    return w


def test_watch_skips_bookmarks_and_fills_type_meta(kstore, monkeypatch):
    w = _watch_with(
        monkeypatch,
        [
            {"type": "BOOKMARK", "raw_object": {"metadata": {"resourceVersion": "5"}}},
            {"type": "ADDED", "raw_object": {"metadata": {"name": "s", "resourceVersion": "6"}}},
        ],
    )

    events = list(kstore.watch(SECRETS, resource_version="4", timeout_seconds=30))

    assert events == [("ADDED", {"metadata": {"name": "s", "resourceVersion": "6"}, "apiVersion": "v1", "kind": "Secret"})]
    assert w.kwargs["resource_version"] == "4"
    assert w.kwargs["timeout_seconds"] == 30
    assert w.stopped


def test_watch_error_410_is_expiry(kstore, monkeypatch):
    _watch_with(monkeypatch, [{"type": "ERROR", "raw_object": {"code": 410, "message": "too old resource version"}}])

    with pytest.raises(WatchExpiredError, match="too old"):
        list(kstore.watch(CACHED_CERTIFICATES))


def test_bounded_store_checks_deadline_first():
    inner = FakeApi(get={})
    bounded = BoundedStore(inner, Deadline(0), request_timeout=5.0)

    with pytest.raises(DeadlineExceededError):
        bounded.get(SECRETS, "testing", "s")
    assert inner.calls == []


def test_bounded_store_caps_call_timeout():
    now = [100.0]
    deadline = Deadline(3.0, clock=lambda: now[0])
    inner = FakeApi(get={}, patch_status={})
    bounded = BoundedStore(inner, deadline, request_timeout=5.0)

    bounded.get(SECRETS, "testing", "s")
    now[0] += 2.5
    bounded.patch_status(CACHED_CERTIFICATES, "testing", "c", {"state": "Error"})

    assert inner.calls[0][2]["timeout"] == 3.0
    assert inner.calls[1][2]["timeout"] == pytest.approx(0.5)


def test_bounded_store_without_deadline_uses_request_timeout():
    inner = FakeApi(create={})
    BoundedStore(inner, Deadline.none(), request_timeout=5.0).create(SECRETS, {"metadata": {}})
    assert inner.calls[0][2]["timeout"] == 5.0


def test_watch_ends_once_stop_is_set(kstore, monkeypatch):
    stop = threading.Event()
    _watch_with(
        monkeypatch,
        [
            {"type": "ADDED", "raw_object": {"metadata": {"name": "a"}}},
            {"type": "ADDED", "raw_object": {"metadata": {"name": "b"}}},
        ],
    )

    seen = []
    for _, obj in kstore.watch(SECRETS, stop=stop):
        seen.append(obj["metadata"]["name"])
        stop.set()

    assert seen == ["a"]


def test_close_stops_open_watches(kstore, monkeypatch):
    w = _watch_with(monkeypatch, [{"type": "ADDED", "raw_object": {"metadata": {"name": "a"}}}] * 3)
    stream = kstore.watch(SECRETS)
    next(stream)

    kstore.close()

    assert w.stopped
