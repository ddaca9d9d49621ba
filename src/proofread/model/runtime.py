"""onnxruntime bindings: the environment, sessions, and closeable tensors.

onnxruntime is imported inside OrtRuntime so that importing this module
(and the rest of the package) stays cheap and works without the runtime
installed, e.g. in tests that inject doubles.
"""

from collections.abc import Iterator, Sequence
from typing import Any

import numpy as np

from proofread.constants import INTRA_OP_NUM_THREADS
from proofread.env import LOGGER
from proofread.protocols import Shape


class Tensor:
    """One OrtValue with an explicit, single close."""

    __slots__ = ("_value",)

    def __init__(self, value: Any) -> None:
        self._value = value

    @property
    def closed(self) -> bool:
        return self._value is None

    def numpy(self) -> np.ndarray:
        if self._value is None:
            raise RuntimeError("tensor is closed")
        return self._value.numpy()

    def close(self) -> None:
        if self._value is None:
            raise RuntimeError("tensor closed twice")
        self._value = None

    def __enter__(self) -> "Tensor":
        return self

    def __exit__(self, *exc: object) -> None:
        if self._value is not None:
            self.close()


class RunResult:
    """Ordered outputs of a session run.

    Tensors moved out with take() belong to the caller; close() releases
    everything still held.
    """

    __slots__ = ("_tensors",)

    def __init__(self, tensors: dict[str, Any]) -> None:
        self._tensors = dict(tensors)

    def names(self) -> Sequence[str]:
        return list(self._tensors)

    def __getitem__(self, name: str) -> Any:
        return self._tensors[name]

    def __iter__(self) -> Iterator[str]:
        return iter(list(self._tensors))

    def __len__(self) -> int:
        return len(self._tensors)

    def take(self, name: str) -> Any:
        return self._tensors.pop(name)

    def close(self) -> None:
        tensors, self._tensors = self._tensors, {}
        for tensor in tensors.values():
            if not tensor.closed:
                tensor.close()


def _dim(value: Any) -> int | None:
    """Declared dimension, or None when symbolic ("batch", "seq", ...)."""
    return value if isinstance(value, int) and value >= 0 else None


class Session:
    """A loaded InferenceSession bound to one file."""

    __slots__ = ("_session", "path", "_inputs", "_outputs")

    def __init__(self, session: Any, path: str) -> None:
        self._session = session
        self.path = path
        self._inputs = {arg.name: arg for arg in session.get_inputs()}
        self._outputs = [arg.name for arg in session.get_outputs()]

    @property
    def input_names(self) -> Sequence[str]:
        return list(self._inputs)

    @property
    def output_names(self) -> Sequence[str]:
        return list(self._outputs)

    def input_shape(self, name: str) -> Shape | None:
        arg = self._inputs.get(name)
        shape = getattr(arg, "shape", None)
        if not isinstance(shape, (list, tuple)):
            return None
        return tuple(_dim(d) for d in shape)

    def run(self, feeds: dict[str, Tensor]) -> RunResult:
        if self._session is None:
            raise RuntimeError(f"session for {self.path} is closed")
        values = self._session.run_with_ort_values(
            self._outputs, {name: t._value for name, t in feeds.items()}
        )
        return RunResult(
            {name: Tensor(v) for name, v in zip(self._outputs, values)}
        )

    def close(self) -> None:
        self._session = None


class OrtRuntime:
    """The onnxruntime environment shared by the encoder and decoder."""

    def __init__(self, intra_op_threads: int = INTRA_OP_NUM_THREADS) -> None:
        import onnxruntime as ort

        self._ort = ort
        options = ort.SessionOptions()
        options.graph_optimization_level = (
            ort.GraphOptimizationLevel.ORT_ENABLE_ALL
        )
        options.intra_op_num_threads = intra_op_threads
        options.log_severity_level = 2
        self._options = options
        self._closed = False

    def create_session(self, path: str) -> Session:
        if self._closed:
            raise RuntimeError("runtime is closed")
        LOGGER.debug("Creating session for %s", path)
        session = self._ort.InferenceSession(
            path,
            sess_options=self._options,
            providers=["CPUExecutionProvider"],
        )
        return Session(session, path)

    def tensor(self, array: np.ndarray) -> Tensor:
        # OrtValue keeps a reference to the array; it must be contiguous.
        array = np.ascontiguousarray(array)
        return Tensor(self._ort.OrtValue.ortvalue_from_numpy(array))

    def close(self) -> None:
        self._closed = True
