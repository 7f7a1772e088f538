"""Thread-safe sample buffer shared by producers and the flusher."""

from __future__ import annotations

import threading
from typing import Iterable

from .sample import Sample


class SampleBuffer:
    """Accumulates samples between flush cycles.

    Any number of threads may call :meth:`add_samples`; only the flush cycle
    calls :meth:`drain`. The buffer is unbounded. Once :meth:`close` has been
    called it rejects new samples but can still be drained.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._samples: list[Sample] = []
        self._closed = False

    def add_samples(self, samples: Iterable[Sample]) -> int:
        """Append *samples* in arrival order.

        Returns the number of samples accepted, which is 0 after :meth:`close`.
        """
        batch = list(samples)
        with self._lock:
            if self._closed:
                return 0
            self._samples.extend(batch)
        return len(batch)

    def drain(self) -> list[Sample]:
        """Remove and return everything buffered so far."""
        with self._lock:
            drained, self._samples = self._samples, []
        return drained

    def close(self) -> None:
        with self._lock:
            self._closed = True

    @property
    def closed(self) -> bool:
        return self._closed

    def __len__(self) -> int:
        with self._lock:
            return len(self._samples)
