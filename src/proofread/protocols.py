"""Structural type protocols for the tensor runtime and its collaborators."""

from collections.abc import Callable, Iterator, Sequence
from typing import Protocol, TypeAlias

import numpy as np

Shape: TypeAlias = tuple[int | None, ...]


class TensorLike(Protocol):
    """A runtime-owned tensor that must be closed exactly once."""

    @property
    def closed(self) -> bool: ...

    def numpy(self) -> np.ndarray: ...

    def close(self) -> None: ...


class RunResultLike(Protocol):
    """Named outputs of one session run."""

    def names(self) -> Sequence[str]: ...

    def take(self, name: str) -> TensorLike: ...

    def __getitem__(self, name: str) -> TensorLike: ...

    def __iter__(self) -> Iterator[str]: ...

    def close(self) -> None: ...


class SessionLike(Protocol):
    """A loaded computation graph."""

    @property
    def input_names(self) -> Sequence[str]: ...

    @property
    def output_names(self) -> Sequence[str]: ...

    def input_shape(self, name: str) -> Shape | None: ...

    def run(self, feeds: dict[str, TensorLike]) -> RunResultLike: ...

    def close(self) -> None: ...


class RuntimeLike(Protocol):
    """Tensor runtime environment: creates sessions and tensors."""

    def create_session(self, path: str) -> SessionLike: ...

    def tensor(self, array: np.ndarray) -> TensorLike: ...

    def close(self) -> None: ...


class TimerHandle(Protocol):
    def cancel(self) -> None: ...


class TimerScheduler(Protocol):
    """Runs a callback once after a delay unless cancelled."""

    def call_later(
        self, delay: float, callback: Callable[[], None]
    ) -> TimerHandle: ...
