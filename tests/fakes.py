"""Test doubles for the tensor runtime, sessions and timers."""

from __future__ import annotations

from collections.abc import Callable
from pathlib import Path
from typing import TypeAlias

import numpy as np

from proofread.model.cache import copy_to_cache
from proofread.model.runtime import RunResult

HIDDEN_DIM = 32
VOCAB_SIZE = 256
EOS = 1

VOCAB = {
    "<pad>": 0,
    "</s>": 1,
    "<unk>": 2,
    "▁": 3,
    "I": 10,
    "▁have": 11,
    "▁has": 12,
    "▁a": 13,
    "▁apple": 14,
    "grammar": 15,
    ":": 16,
}

Feeds: TypeAlias = dict[str, np.ndarray]
Handler: TypeAlias = Callable[[Feeds], Feeds]
NextToken: TypeAlias = Callable[[Feeds, int], int]


class FakeTensor:
    """Tensor that reports opens/closes to its runtime."""

    def __init__(self, runtime: FakeRuntime, array: np.ndarray) -> None:
        self._runtime = runtime
        self._array = np.asarray(array)
        self._closed = False
        runtime.opened += 1

    @property
    def closed(self) -> bool:
        return self._closed

    def numpy(self) -> np.ndarray:
        if self._closed:
            raise RuntimeError("tensor is closed")
        return self._array

    def close(self) -> None:
        if self._closed:
            raise RuntimeError("tensor closed twice")
        self._closed = True
        self._runtime.closed += 1


class FakeSession:
    """Session whose outputs are computed by a handler from the feeds."""

    def __init__(
        self,
        inputs: dict[str, tuple | None],
        outputs: list[str],
        handler: Handler,
    ) -> None:
        self._inputs = inputs
        self._outputs = outputs
        self.handler = handler
        self.runtime: FakeRuntime | None = None
        self.calls: list[dict[str, np.ndarray]] = []
        self.closed = False
        self.close_count = 0

    @property
    def input_names(self) -> list[str]:
        return list(self._inputs)

    @property
    def output_names(self) -> list[str]:
        return list(self._outputs)

    def input_shape(self, name: str) -> tuple | None:
        return self._inputs.get(name)

    def run(self, feeds: dict[str, FakeTensor]) -> RunResult:
        assert not self.closed, "session used after close"
        assert self.runtime is not None
        for name, tensor in feeds.items():
            assert not tensor.closed, f"input {name} was already closed"
        arrays = {name: t.numpy().copy() for name, t in feeds.items()}
        self.calls.append(arrays)
        out = self.handler(arrays)
        return RunResult(
            {
                name: FakeTensor(self.runtime, out[name])
                for name in self._outputs
                if name in out
            }
        )

    def close(self) -> None:
        self.closed = True
        self.close_count += 1


class FakeRuntime:
    """Runtime that hands out preconfigured sessions by artifact kind.

    Any path containing "broken" fails to load.
    """

    def __init__(self, sessions: dict[str, FakeSession]) -> None:
        self.sessions = sessions
        for session in sessions.values():
            session.runtime = self
        self.opened = 0
        self.closed = 0
        self.created_sessions: list[str] = []
        self.close_count = 0

    @property
    def live_tensors(self) -> int:
        return self.opened - self.closed

    def create_session(self, path: str) -> FakeSession:
        self.created_sessions.append(path)
        name = Path(path).name
        if "broken" in name:
            raise RuntimeError(f"invalid model {name}")
        for kind, session in self.sessions.items():
            if name.startswith(kind):
                session.closed = False
                return session
        raise RuntimeError(f"no model at {path}")

    def tensor(self, array: np.ndarray) -> FakeTensor:
        return FakeTensor(self, array)

    def close(self) -> None:
        self.close_count += 1


class CountingCopier:
    """Records copies; real files are copied, other sources are faked."""

    def __init__(self) -> None:
        self.calls: list[tuple[str, str]] = []

    def __call__(self, source: str, kind: str, cache_dir: Path) -> Path:
        self.calls.append((source, kind))
        if Path(source).exists():
            return copy_to_cache(source, kind, cache_dir)
        return cache_dir / f"{kind}-{Path(source).name}"


class FakeHandle:
    def __init__(self, when: float, callback: Callable[[], None]) -> None:
        self.when = when
        self.callback = callback
        self.cancelled = False

    def cancel(self) -> None:
        self.cancelled = True


class FakeScheduler:
    """Virtual clock: callbacks run only when advance() passes them."""

    def __init__(self) -> None:
        self.now = 0.0
        self.handles: list[FakeHandle] = []

    def call_later(self, delay: float, callback: Callable[[], None]) -> FakeHandle:
        handle = FakeHandle(self.now + delay, callback)
        self.handles.append(handle)
        return handle

    @property
    def pending(self) -> list[FakeHandle]:
        return [h for h in self.handles if not h.cancelled]

    def advance(self, seconds: float) -> None:
        self.now += seconds
        due = [h for h in self.pending if h.when <= self.now]
        for handle in due:
            self.handles.remove(handle)
            handle.callback()


# ---------------------------------------------------------------------------
# Scripted graphs
# ---------------------------------------------------------------------------


def logits_for(token: int, seq_len: int) -> np.ndarray:
    """Logits whose argmax at the last position is *token*."""
    logits = np.zeros((1, seq_len, VOCAB_SIZE), dtype=np.float32)
    logits[0, -1, token] = 1.0
    return logits


def make_encoder() -> FakeSession:
    """Encoder that writes each input id into hidden[0, i, 0]."""

    def handler(feeds: Feeds) -> Feeds:
        ids = feeds["input_ids"]
        hidden = np.zeros((1, ids.shape[1], HIDDEN_DIM), dtype=np.float32)
        hidden[0, :, 0] = ids[0]
        return {"last_hidden_state": hidden}

    return FakeSession(
        {"input_ids": (None, None), "attention_mask": (None, None)},
        ["last_hidden_state"],
        handler,
    )


def scripted(tokens: list[int]) -> NextToken:
    """Token for each step, then the end marker."""
    return lambda feeds, step: tokens[step] if step < len(tokens) else EOS


def echo_source(
    replacements: dict[int, int] | None = None,
    skip: frozenset[int] = frozenset(),
) -> NextToken:
    """Re-emit the encoded source ids read back from the hidden states."""
    replacements = replacements or {}

    def next_token(feeds: Feeds, step: int) -> int:
        source = [int(v) for v in feeds["encoder_hidden_states"][0, :, 0]]
        body = [replacements.get(i, i) for i in source if i != EOS and i not in skip]
        return body[step] if step < len(body) else EOS

    return next_token


STATELESS_INPUTS = {
    "input_ids": (None, None),
    "encoder_attention_mask": (None, None),
    "encoder_hidden_states": (None, None, HIDDEN_DIM),
}


def make_stateless_decoder(next_token: NextToken) -> FakeSession:
    """Decoder re-fed the whole sequence; the step is its length - 1."""

    def handler(feeds: Feeds) -> Feeds:
        seq = feeds["input_ids"].shape[1]
        return {"logits": logits_for(next_token(feeds, seq - 1), seq)}

    return FakeSession(dict(STATELESS_INPUTS), ["logits"], handler)


def cache_slot_names(style: str) -> tuple[list[str], list[str]]:
    """(input names, output names) for one layer of cache slots."""
    if style == "pkv":
        inputs = [f"pkv_{i}" for i in range(4)]
        outputs = [f"present.{i}" for i in range(4)]
        return inputs, outputs
    parts = ["decoder.key", "decoder.value", "encoder.key", "encoder.value"]
    return (
        [f"past_key_values.0.{p}" for p in parts],
        [f"present.0.{p}" for p in parts],
    )


def make_cached_decoder(
    next_token: NextToken,
    *,
    merged: bool = False,
    style: str = "past_key_values",
    declared_heads: int | None = 4,
    drop_outputs: frozenset[str] = frozenset(),
) -> FakeSession:
    """Decoder with cache slots; self-attention caches grow each step.

    The step is the sequence length held by the first self-attention slot.
    """
    cache_inputs, cache_outputs = cache_slot_names(style)
    inputs: dict[str, tuple | None] = dict(STATELESS_INPUTS)
    for name in cache_inputs:
        inputs[name] = (None, declared_heads, None, None)
    if merged:
        inputs["use_cache_branch"] = (1,)
    outputs = ["logits", *cache_outputs]
    half = len(cache_inputs) // 2

    def handler(feeds: Feeds) -> Feeds:
        fed = feeds["input_ids"].shape[1]
        step = feeds[cache_inputs[0]].shape[2]
        out = {"logits": logits_for(next_token(feeds, step), fed)}
        for i, (src, dst) in enumerate(zip(cache_inputs, cache_outputs)):
            past = feeds[src]
            if i < half:
                b, h, s, d = past.shape
                out[dst] = np.zeros((b, h, s + fed, d), dtype=np.float32)
            else:
                out[dst] = past
        for name in drop_outputs:
            out.pop(name, None)
        return out

    return FakeSession(inputs, outputs, handler)
