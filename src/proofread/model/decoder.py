"""Decode loop: greedy autoregressive generation over the decoder graph.

Decoder exports come in three calling conventions, detected once from the
declared input names:

- STATELESS: no cache inputs; every step re-feeds the whole sequence.
- CACHED: ``past_key_values*`` / ``pkv*`` inputs; step 0 gets zero-filled
  caches, later steps get the newest token plus the previous step's
  ``present*`` outputs. Exports that return only self-attention
  ``present*`` outputs (``decoder_with_past``) keep feeding the step-0
  cross-attention slots unchanged.
- MERGED: CACHED plus a ``use_cache_branch`` flag, false on step 0 and
  true afterwards.

Tensor ownership: the hidden-state and mask tensors live for the whole
loop; each step's cache outputs replace the previous step's, which are
closed only after the new ones have been captured. Everything else a step
creates is closed before the step returns.
"""

import enum
import threading
import time
from collections.abc import Sequence
from dataclasses import dataclass

import numpy as np

from proofread.constants import (
    DEFAULT_NUM_HEADS,
    LOGITS_OUTPUT,
    USE_CACHE_BRANCH_INPUT,
)
from proofread.env import LOGGER
from proofread.errors import Cancelled, InferenceError, ProofreadError
from proofread.model._utils import (
    is_cache_input,
    is_cross_attention_slot,
    match_cache_input,
    select_next_token,
    zero_cache,
)
from proofread.model.encoder import EncoderOutput
from proofread.protocols import RunResultLike, RuntimeLike, SessionLike, TensorLike


class Convention(enum.Enum):
    STATELESS = "stateless"
    CACHED = "cached"
    MERGED = "merged"


@dataclass(frozen=True, slots=True)
class DecoderSignature:
    """Input roles of a decoder graph and its calling convention."""

    convention: Convention
    token_input: str | None
    hidden_input: str | None
    mask_input: str | None
    cache_inputs: tuple[str, ...] = ()
    use_cache_input: str | None = None
    logits_output: str | None = None

    @property
    def uses_cache(self) -> bool:
        return self.convention is not Convention.STATELESS

    def step_tokens(self, generated: Sequence[int], step: int) -> list[int]:
        """Tokens fed at *step*: everything, or only the newest with a cache."""
        if self.uses_cache and step > 0:
            return [generated[-1]]
        return list(generated)

    def use_cache_flag(self, step: int) -> bool:
        return self.uses_cache and step > 0


def classify_decoder(session: SessionLike) -> DecoderSignature:
    """Inspect declared input names and pick the calling convention."""
    names = list(session.input_names)
    cache_inputs = tuple(n for n in names if is_cache_input(n))
    use_cache_input = USE_CACHE_BRANCH_INPUT if USE_CACHE_BRANCH_INPUT in names else None

    token_input = hidden_input = mask_input = None
    for name in names:
        if name in cache_inputs or name == use_cache_input:
            continue
        if "input_ids" in name:
            token_input = name
        elif "hidden_states" in name:
            hidden_input = name
        elif "attention_mask" in name:
            mask_input = name

    if token_input is None:
        raise InferenceError(f"decoder has no token input among {names}")

    if cache_inputs and use_cache_input:
        convention = Convention.MERGED
    elif cache_inputs:
        convention = Convention.CACHED
    else:
        convention = Convention.STATELESS

    outputs = list(session.output_names)
    logits_output = LOGITS_OUTPUT if LOGITS_OUTPUT in outputs else (
        outputs[0] if outputs else None
    )
    return DecoderSignature(
        convention=convention,
        token_input=token_input,
        hidden_input=hidden_input,
        mask_input=mask_input,
        cache_inputs=cache_inputs,
        use_cache_input=use_cache_input,
        logits_output=logits_output,
    )


def infer_cache_geometry(
    session: SessionLike, signature: DecoderSignature, hidden_dim: int
) -> tuple[int, int]:
    """Best-effort (num_heads, head_dim) for the zero-filled step-0 caches.

    The head count comes from the first cache slot's declared shape
    [batch, heads, seq, head_dim] when it is concrete, else the T5-small
    default. head_dim is hidden_dim // heads. This is a heuristic: it is
    not cross-checked against other slots.
    """
    num_heads = DEFAULT_NUM_HEADS
    if signature.cache_inputs:
        shape = session.input_shape(signature.cache_inputs[0])
        if shape is not None and len(shape) == 4 and shape[1]:
            num_heads = int(shape[1])
        else:
            LOGGER.debug("Cache head count not declared; assuming %d", num_heads)
    if num_heads > hidden_dim:
        raise InferenceError(
            f"{num_heads} heads do not fit hidden size {hidden_dim}"
        )
    return num_heads, hidden_dim // num_heads


@dataclass(frozen=True, slots=True)
class Generation:
    """Symbols produced by one decode loop, seed start symbol first."""

    tokens: list[int]
    steps: int
    finished: bool
    elapsed_ms: float

    @property
    def body(self) -> list[int]:
        return self.tokens[1:]


def _close_all(tensors: Sequence[TensorLike]) -> None:
    for tensor in tensors:
        if not tensor.closed:
            tensor.close()


class DecodeLoop:
    """Drives one decoder session for one request."""

    def __init__(
        self,
        runtime: RuntimeLike,
        session: SessionLike,
        signature: DecoderSignature | None = None,
    ) -> None:
        self.runtime = runtime
        self.session = session
        self.signature = signature or classify_decoder(session)

    def generate(
        self,
        encoder_output: EncoderOutput,
        *,
        max_steps: int,
        start_token_id: int,
        eos_token_id: int,
        cancel_event: threading.Event | None = None,
    ) -> Generation:
        """Run greedy steps until the end marker or *max_steps*.

        Raises Cancelled if *cancel_event* is set between steps and
        InferenceError on any execution or shape failure; all tensors
        are closed in every case.
        """
        signature = self.signature
        LOGGER.debug(
            "Decoder convention %s (%d cache slots)",
            signature.convention.value,
            len(signature.cache_inputs),
        )
        geometry = None
        if signature.uses_cache:
            geometry = infer_cache_geometry(
                self.session, signature, encoder_output.hidden_dim
            )

        generated = [start_token_id]
        cache: dict[str, TensorLike] = {}
        held: list[TensorLike] = []
        finished = False
        steps = 0
        start = time.perf_counter()
        try:
            hidden = self.runtime.tensor(encoder_output.hidden_states)
            held.append(hidden)
            mask = self.runtime.tensor(encoder_output.attention_mask)
            held.append(mask)

            for step in range(max_steps):
                if cancel_event is not None and cancel_event.is_set():
                    raise Cancelled(f"cancelled after {step} decoder steps")
                next_token, cache = self._step(
                    step, generated, hidden, mask, cache, geometry,
                    encoder_output.seq_len,
                )
                steps = step + 1
                if next_token == eos_token_id:
                    finished = True
                    break
                generated.append(next_token)
        except ProofreadError:
            raise
        except Exception as exc:
            raise InferenceError(f"decoder step failed: {exc}") from exc
        finally:
            _close_all(list(cache.values()))
            _close_all(held)

        elapsed_ms = (time.perf_counter() - start) * 1000
        LOGGER.debug("Decoded %d steps in %.0f ms", steps, elapsed_ms)
        return Generation(generated, steps, finished, elapsed_ms)

    def _step(
        self,
        step: int,
        generated: list[int],
        hidden: TensorLike,
        mask: TensorLike,
        cache: dict[str, TensorLike],
        geometry: tuple[int, int] | None,
        encoder_len: int,
    ) -> tuple[int, dict[str, TensorLike]]:
        """One decoder execution.

        Returns the chosen token and the cache to carry forward. The
        incoming cache is closed only once the outgoing one is captured;
        on failure it is left to the caller.
        """
        signature = self.signature
        tokens = signature.step_tokens(generated, step)
        created: list[TensorLike] = []
        new_cache: dict[str, TensorLike] = {}
        result: RunResultLike | None = None
        try:
            ids = self.runtime.tensor(np.asarray([tokens], dtype=np.int64))
            created.append(ids)
            feeds: dict[str, TensorLike] = {signature.token_input: ids}
            if signature.hidden_input:
                feeds[signature.hidden_input] = hidden
            if signature.mask_input:
                feeds[signature.mask_input] = mask
            if signature.use_cache_input:
                flag = self.runtime.tensor(
                    np.array([signature.use_cache_flag(step)], dtype=np.bool_)
                )
                created.append(flag)
                feeds[signature.use_cache_input] = flag
            if signature.uses_cache:
                feeds.update(
                    cache
                    or self._zero_caches(created, geometry, encoder_len)
                )

            result = self.session.run(feeds)
            if signature.logits_output not in result.names():
                raise InferenceError("decoder produced no logits")
            logits = np.asarray(result[signature.logits_output].numpy())
            next_token = select_next_token(logits, len(tokens) - 1)

            if signature.uses_cache:
                for name in result.names():
                    target = match_cache_input(name, signature.cache_inputs)
                    if target is not None and target not in new_cache:
                        new_cache[target] = result.take(name)
                self._carry_cross_attention(feeds, created, new_cache)
        except BaseException:
            _close_all(list(new_cache.values()))
            raise
        finally:
            _close_all(created)
            if result is not None:
                result.close()

        _close_all(
            [t for name, t in cache.items() if new_cache.get(name) is not t]
        )
        return next_token, new_cache

    def _carry_cross_attention(
        self,
        feeds: dict[str, TensorLike],
        created: list[TensorLike],
        new_cache: dict[str, TensorLike],
    ) -> None:
        """Re-feed cross-attention slots the decoder did not return.

        Their keys/values depend only on the encoder output, so the tensor
        fed this step stays valid for the next one. A missing
        self-attention slot is an error.
        """
        slots = self.signature.cache_inputs
        missing = [name for name in slots if name not in new_cache]
        unrecoverable = [
            name for name in missing if not is_cross_attention_slot(name, len(slots))
        ]
        if unrecoverable:
            raise InferenceError(f"decoder returned no cache for {unrecoverable}")
        for name in missing:
            carried = feeds[name]
            if carried in created:
                created.remove(carried)
            new_cache[name] = carried

    def _zero_caches(
        self,
        created: list[TensorLike],
        geometry: tuple[int, int] | None,
        encoder_len: int,
    ) -> dict[str, TensorLike]:
        num_heads, head_dim = geometry or (DEFAULT_NUM_HEADS, 0)
        slots = self.signature.cache_inputs
        zeros: dict[str, TensorLike] = {}
        for name in slots:
            tensor = self.runtime.tensor(
                zero_cache(name, len(slots), num_heads, head_dim, encoder_len)
            )
            created.append(tensor)
            zeros[name] = tensor
        return zeros
