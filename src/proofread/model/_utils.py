"""Array helpers for the decode loop.

Pure functions for greedy token selection and cache-slot bookkeeping.
"""

from collections.abc import Sequence

import numpy as np

from proofread.constants import CACHE_INPUT_PREFIXES, CACHE_OUTPUT_PREFIX
from proofread.errors import InferenceError


def select_next_token(logits: np.ndarray, position: int) -> int:
    """Greedy argmax over the vocabulary axis at *position*.

    Accepts [batch, seq, vocab] or plain [batch, vocab] / [vocab] logits.
    """
    if logits.ndim == 3:
        if logits.shape[0] < 1 or not 0 <= position < logits.shape[1]:
            raise InferenceError(
                f"logits shape {logits.shape} has no position {position}"
            )
        row = logits[0, position]
    elif logits.ndim == 2:
        row = logits[0]
    elif logits.ndim == 1:
        row = logits
    else:
        raise InferenceError(f"unexpected logits shape {logits.shape}")
    if row.size == 0:
        raise InferenceError("logits have an empty vocabulary axis")
    return int(np.argmax(row))


def is_cache_input(name: str) -> bool:
    return name.startswith(CACHE_INPUT_PREFIXES)


def cache_slot_index(name: str) -> int:
    """Numeric slot of ``pkv_N`` / ``past_key_values.N``, else 0."""
    for prefix in ("pkv_", "past_key_values."):
        if name.startswith(prefix):
            head = name[len(prefix) :].split(".", 1)[0]
            return int(head) if head.isdigit() else 0
    return 0


def is_cross_attention_slot(name: str, num_slots: int) -> bool:
    """Whether a slot caches encoder keys/values.

    Exports list self-attention slots first and cross-attention slots in
    the second half.
    """
    return "encoder" in name or cache_slot_index(name) >= num_slots // 2


def zero_cache(
    name: str,
    num_slots: int,
    num_heads: int,
    head_dim: int,
    encoder_len: int,
) -> np.ndarray:
    """Empty step-0 cache: [1, heads, 0 or encoder_len, head_dim]."""
    seq = encoder_len if is_cross_attention_slot(name, num_slots) else 0
    return np.zeros((1, num_heads, seq, head_dim), dtype=np.float32)


def match_cache_input(output_name: str, cache_inputs: Sequence[str]) -> str | None:
    """Input slot that a ``present*`` output feeds on the next step."""
    if not output_name.startswith(CACHE_OUTPUT_PREFIX):
        return None
    renamed = output_name.replace(CACHE_OUTPUT_PREFIX, "past_key_values", 1)
    if renamed in cache_inputs:
        return renamed
    _, dot, suffix = output_name.partition(".")
    if not dot or not suffix:
        return None
    if f"pkv_{suffix}" in cache_inputs:
        return f"pkv_{suffix}"
    for name in cache_inputs:
        if name.endswith(suffix):
            return name
    return None
