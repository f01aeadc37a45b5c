"""
Scoped ownership of framework objects.

Every object the kernel obtains from PyAV is registered here and wrapped
in a ``ScopedHandle``. Handles release their object exactly once: on
``release()``, on context-manager exit, or when the owning registry is
closed. Ownership can be handed over with ``move()``, which empties the
source handle so the object can never be released twice.

The registry counts acquisitions and releases per category so that a
run's resource discipline can be checked after the fact (``balanced``).
Frames and packets flowing through the hot loop are tracked with
``scoped_unref``: the work item is counted as in flight for the duration
of the ``with`` block and dropped on exit.
"""

import logging
import threading
from collections import Counter
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from enum import Enum
from typing import Any

import av

from media_cookbook.errors import ResourceExhaustedError

logger = logging.getLogger(__name__)


class ResourceCategory(Enum):
    INPUT_CONTAINER = "input_container"
    OUTPUT_CONTAINER = "output_container"
    DECODER = "decoder"
    ENCODER = "encoder"
    FRAME = "frame"
    PACKET = "packet"
    FILTER_GRAPH = "filter_graph"
    RESCALER = "rescaler"
    RESAMPLER = "resampler"
    HW_DEVICE = "hw_device"
    HW_FRAMES = "hw_frames"
    BUFFER = "buffer"


def _drop(_obj: Any) -> None:
    """Release by dropping the reference; PyAV frees the native object on collection."""


def _close(obj: Any) -> None:
    obj.close()


class ScopedHandle:
    """Owning reference to one framework object."""

    __slots__ = ("_registry", "category", "_obj", "_release")

    def __init__(self, registry: "ResourceRegistry", category: ResourceCategory, obj: Any, release: Callable) -> None:
        self._registry = registry
        self.category = category
        self._obj = obj
        self._release = release

    @property
    def alive(self) -> bool:
        return self._obj is not None

    def get(self) -> Any:
        if self._obj is None:
            raise RuntimeError(f"{self.category.value} handle is empty (released or moved)")
        return self._obj

    def move(self) -> "ScopedHandle":
        """Transfer ownership to a new handle. This handle becomes empty."""
        obj = self.get()
        handle = ScopedHandle(self._registry, self.category, obj, self._release)
        self._registry._replace(self, handle)
        self._obj = None
        return handle

    def release(self) -> None:
        """Release the owned object. Safe to call more than once."""
        if self._obj is None:
            return
        obj, self._obj = self._obj, None
        try:
            self._release(obj)
        finally:
            self._registry._record_release(self)

    def __enter__(self) -> Any:
        return self.get()

    def __exit__(self, exc_type, exc, tb) -> None:
        self.release()


class ResourceRegistry:
    """
    Tracks every framework object acquired during a pipeline run.

    Use as a context manager: on exit, all handles still alive are released
    in reverse acquisition order.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._acquired: Counter[ResourceCategory] = Counter()
        self._released: Counter[ResourceCategory] = Counter()
        self._live: list[ScopedHandle] = []
        self._in_flight = 0

    # --- Acquisition --------------------------------------------------------

    def acquire(self, category: ResourceCategory, obj: Any, release: Callable = _drop) -> ScopedHandle:
        if obj is None:
            raise ResourceExhaustedError(f"allocation of {category.value} failed")
        handle = ScopedHandle(self, category, obj, release)
        with self._lock:
            self._acquired[category] += 1
            self._live.append(handle)
        return handle

    def input_container(self, container) -> ScopedHandle:
        return self.acquire(ResourceCategory.INPUT_CONTAINER, container, _close)

    def output_container(self, container, release: Callable = _close) -> ScopedHandle:
        return self.acquire(ResourceCategory.OUTPUT_CONTAINER, container, release)

    def decoder(self, codec_context) -> ScopedHandle:
        return self.acquire(ResourceCategory.DECODER, codec_context)

    def encoder(self, codec_context) -> ScopedHandle:
        return self.acquire(ResourceCategory.ENCODER, codec_context)

    def frame(self, frame) -> ScopedHandle:
        return self.acquire(ResourceCategory.FRAME, frame)

    def packet(self, packet) -> ScopedHandle:
        return self.acquire(ResourceCategory.PACKET, packet)

    def filter_graph(self, graph) -> ScopedHandle:
        return self.acquire(ResourceCategory.FILTER_GRAPH, graph)

    def rescaler(self, reformatter) -> ScopedHandle:
        return self.acquire(ResourceCategory.RESCALER, reformatter)

    def resampler(self, resampler) -> ScopedHandle:
        return self.acquire(ResourceCategory.RESAMPLER, resampler)

    def hw_device(self, device) -> ScopedHandle:
        return self.acquire(ResourceCategory.HW_DEVICE, device)

    def hw_frames(self, pool) -> ScopedHandle:
        return self.acquire(ResourceCategory.HW_FRAMES, pool)

    def buffer(self, buf) -> ScopedHandle:
        return self.acquire(ResourceCategory.BUFFER, buf)

    @contextmanager
    def scoped_unref(self, item) -> Iterator[Any]:
        """Mark a frame or packet as in flight for the duration of the block."""
        category = ResourceCategory.PACKET if _is_packet(item) else ResourceCategory.FRAME
        with self._lock:
            self._acquired[category] += 1
            self._in_flight += 1
        try:
            yield item
        finally:
            with self._lock:
                self._released[category] += 1
                self._in_flight -= 1

    # --- Bookkeeping --------------------------------------------------------

    def _record_release(self, handle: ScopedHandle) -> None:
        with self._lock:
            self._released[handle.category] += 1
            if handle in self._live:
                self._live.remove(handle)

    def _replace(self, old: ScopedHandle, new: ScopedHandle) -> None:
        with self._lock:
            idx = self._live.index(old)
            self._live[idx] = new

    def release_all(self) -> None:
        """Release every live handle, newest first. Release failures are logged, not raised."""
        while True:
            with self._lock:
                if not self._live:
                    return
                handle = self._live[-1]
            try:
                handle.release()
            except Exception as e:
                logger.warning("[resources] Release of %s failed: %s", handle.category.value, e)

    @property
    def in_flight(self) -> int:
        return self._in_flight

    @property
    def live(self) -> int:
        return len(self._live)

    @property
    def balanced(self) -> bool:
        """True when every acquisition has a matching release and nothing is in flight."""
        with self._lock:
            return self._acquired == self._released and self._in_flight == 0 and not self._live

    def stats(self) -> dict[str, tuple[int, int]]:
        """Per-category ``(acquired, released)`` counts."""
        with self._lock:
            return {
                category.value: (self._acquired[category], self._released[category])
                for category in ResourceCategory
                if self._acquired[category] or self._released[category]
            }

    def __enter__(self) -> "ResourceRegistry":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.release_all()


def _is_packet(item) -> bool:
    return isinstance(item, av.Packet)
