"""Tests for scoped ownership and the resource registry."""

import pytest

from media_cookbook.errors import ResourceExhaustedError
from media_cookbook.kernel.resources import ResourceCategory, ResourceRegistry


class Closable:
    def __init__(self):
        self.closed = 0

    def close(self):
        self.closed += 1


def test_release_runs_exactly_once():
    registry = ResourceRegistry()
    obj = Closable()
    handle = registry.input_container(obj)
    handle.release()
    handle.release()
    assert obj.closed == 1
    assert not handle.alive
    assert registry.balanced


def test_context_manager_releases_handle():
    registry = ResourceRegistry()
    obj = Closable()
    with registry.output_container(obj) as inner:
        assert inner is obj
    assert obj.closed == 1
    assert registry.balanced


def test_move_transfers_ownership():
    registry = ResourceRegistry()
    obj = Closable()
    first = registry.input_container(obj)
    second = first.move()

    assert not first.alive
    with pytest.raises(RuntimeError):
        first.get()
    first.release()
    assert obj.closed == 0

    second.release()
    assert obj.closed == 1
    assert registry.balanced


def test_release_all_is_newest_first():
    order = []
    registry = ResourceRegistry()
    for name in ("graph", "decoder", "frame"):
        registry.acquire(ResourceCategory.BUFFER, name, release=order.append)
    assert registry.live == 3
    registry.release_all()
    assert order == ["frame", "decoder", "graph"]
    assert registry.live == 0
    assert registry.balanced


def test_release_all_continues_after_a_failing_release():
    released = []

    def failing(_obj):
        raise OSError("close failed")

    registry = ResourceRegistry()
    registry.acquire(ResourceCategory.BUFFER, "a", release=released.append)
    registry.acquire(ResourceCategory.BUFFER, "b", release=failing)
    registry.release_all()
    assert released == ["a"]
    assert registry.live == 0


def test_registry_context_manager_releases_everything():
    obj = Closable()
    with ResourceRegistry() as registry:
        registry.input_container(obj)
        registry.frame(object())
    assert obj.closed == 1
    assert registry.balanced


def test_scoped_unref_tracks_in_flight_items():
    registry = ResourceRegistry()
    with registry.scoped_unref(object()):
        assert registry.in_flight == 1
        assert not registry.balanced
    assert registry.in_flight == 0
    assert registry.balanced
    assert registry.stats()["frame"] == (1, 1)


def test_scoped_unref_releases_on_error():
    registry = ResourceRegistry()
    with pytest.raises(ValueError):
        with registry.scoped_unref(object()):
            raise ValueError("boom")
    assert registry.balanced


def test_failed_allocation_is_resource_exhausted():
    registry = ResourceRegistry()
    with pytest.raises(ResourceExhaustedError):
        registry.frame(None)
    assert registry.balanced


def test_unreleased_handle_is_not_balanced():
    registry = ResourceRegistry()
    handle = registry.decoder(object())
    assert not registry.balanced
    assert registry.stats() == {"decoder": (1, 0)}
    handle.release()
    assert registry.balanced
