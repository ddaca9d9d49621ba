"""Vocabulary codec: text to symbol ids and back.

Two variants share one interface. VocabularyCodec does greedy
longest-match against a loaded SentencePiece-style vocabulary; this is an
approximation of the real unigram segmentation, not a reimplementation.
CharacterCodec is the deterministic fallback used when no vocabulary is
available. Tokenizer.load() picks the variant once.
"""

import json
from collections.abc import Iterable, Mapping
from pathlib import Path
from typing import Protocol

from proofread.constants import (
    CHAR_CODEC_OFFSET,
    EOS_TOKEN_ID,
    MAX_PIECE_LENGTH,
    PAD_TOKEN_ID,
    SPACE_TOKEN_ID,
    TASK_PREFIX,
    UNK_TOKEN_ID,
    UNKNOWN_PLACEHOLDER,
    WHITESPACE_MARKER,
)
from proofread.env import LOGGER
from proofread.errors import TokenizationDegraded


class SymbolCodec(Protocol):
    """Shared interface of both codec variants."""

    def encode(self, text: str) -> list[int]: ...

    def decode(self, ids: Iterable[int]) -> str: ...


class VocabularyCodec:
    """Greedy longest-match codec over a piece -> id vocabulary."""

    __slots__ = ("_piece_to_id", "_id_to_piece")

    def __init__(self, vocab: Mapping[str, int]) -> None:
        if not vocab:
            raise ValueError("vocabulary is empty")
        self._piece_to_id = dict(vocab)
        self._id_to_piece = {i: piece for piece, i in vocab.items()}

    def __len__(self) -> int:
        return len(self._piece_to_id)

    @classmethod
    def from_file(cls, path: str | Path) -> "VocabularyCodec":
        """Read a HuggingFace tokenizer.json or a token<TAB>id listing.

        Raises TokenizationDegraded if the file is missing, unreadable,
        or holds no entries.
        """
        path = Path(path)
        try:
            content = path.read_text(encoding="utf-8")
            vocab = (
                parse_tokenizer_json(content)
                if path.suffix == ".json"
                else parse_vocab_tsv(content)
            )
            return cls(vocab)
        except (OSError, ValueError, UnicodeDecodeError) as exc:
            raise TokenizationDegraded(
                f"cannot read vocabulary {path}: {exc}"
            ) from exc

    def encode(self, text: str) -> list[int]:
        remaining = text.replace(" ", WHITESPACE_MARKER)
        ids: list[int] = []
        pos = 0
        while pos < len(remaining):
            longest = min(len(remaining) - pos, MAX_PIECE_LENGTH)
            for length in range(longest, 0, -1):
                piece_id = self._piece_to_id.get(remaining[pos : pos + length])
                if piece_id is not None:
                    ids.append(piece_id)
                    pos += length
                    break
            else:
                ids.append(UNK_TOKEN_ID)
                pos += 1
        ids.append(EOS_TOKEN_ID)
        return ids

    def decode(self, ids: Iterable[int]) -> str:
        parts: list[str] = []
        for i in ids:
            i = int(i)
            if i in (PAD_TOKEN_ID, EOS_TOKEN_ID):
                break
            if i == UNK_TOKEN_ID:
                parts.append(UNKNOWN_PLACEHOLDER)
                continue
            piece = self._id_to_piece.get(i, UNKNOWN_PLACEHOLDER)
            parts.append(piece.replace(WHITESPACE_MARKER, " "))
        return "".join(parts).strip()


class CharacterCodec:
    """Fallback: one symbol per character, offset past the special ids."""

    __slots__ = ()

    def encode(self, text: str) -> list[int]:
        ids = [
            SPACE_TOKEN_ID if ch == " " else ord(ch) + CHAR_CODEC_OFFSET
            for ch in text
        ]
        ids.append(EOS_TOKEN_ID)
        return ids

    def decode(self, ids: Iterable[int]) -> str:
        chars: list[str] = []
        for i in ids:
            i = int(i)
            if i in (PAD_TOKEN_ID, EOS_TOKEN_ID):
                break
            if i == UNK_TOKEN_ID:
                chars.append(UNKNOWN_PLACEHOLDER)
            elif i == SPACE_TOKEN_ID:
                chars.append(" ")
            elif i > CHAR_CODEC_OFFSET:
                chars.append(chr(i - CHAR_CODEC_OFFSET))
        return "".join(chars).strip()


def parse_tokenizer_json(content: str) -> dict[str, int]:
    """Extract the vocabulary from a HuggingFace tokenizer.json.

    WordPiece/BPE store ``model.vocab`` as a piece -> id object; Unigram
    (T5) stores a list of ``[piece, score]`` pairs indexed by id.
    """
    data = json.loads(content)
    model = data.get("model") if isinstance(data, dict) else None
    if not isinstance(model, dict):
        raise ValueError("tokenizer.json has no 'model' section")
    raw = model.get("vocab")
    if isinstance(raw, dict):
        return {str(piece): int(i) for piece, i in raw.items()}
    if isinstance(raw, list):
        return {
            str(entry[0]): i
            for i, entry in enumerate(raw)
            if isinstance(entry, list) and entry
        }
    raise ValueError("tokenizer.json has no usable 'model.vocab'")


def parse_vocab_tsv(content: str) -> dict[str, int]:
    """Parse ``piece<TAB>id`` lines; a missing or bad id means the line index."""
    vocab: dict[str, int] = {}
    for index, line in enumerate(content.splitlines()):
        piece, _, raw_id = line.partition("\t")
        if not piece:
            continue
        try:
            vocab[piece] = int(raw_id)
        except ValueError:
            vocab[piece] = index
    return vocab


class Tokenizer:
    """Codec holder that selects its variant when loaded."""

    __slots__ = ("_codec",)

    def __init__(self, codec: SymbolCodec | None = None) -> None:
        self._codec: SymbolCodec = codec or CharacterCodec()

    @property
    def codec(self) -> SymbolCodec:
        return self._codec

    @property
    def degraded(self) -> bool:
        return isinstance(self._codec, CharacterCodec)

    @property
    def eos_token_id(self) -> int:
        return EOS_TOKEN_ID

    @property
    def pad_token_id(self) -> int:
        return PAD_TOKEN_ID

    def load(self, source: str | Path | None) -> bool:
        """Load a vocabulary, falling back to the character codec.

        Never raises: a missing or unreadable vocabulary only degrades
        tokenization quality.
        """
        try:
            if source is None:
                raise TokenizationDegraded("no vocabulary supplied")
            self._codec = VocabularyCodec.from_file(source)
        except TokenizationDegraded as exc:
            LOGGER.warning("Using character fallback tokenizer: %s", exc)
            self._codec = CharacterCodec()
            return False
        LOGGER.debug("Loaded %d vocabulary entries", len(self._codec))
        return True

    def encode(self, text: str, add_task_prefix: bool = False) -> list[int]:
        """Encode text, appending the end marker."""
        if add_task_prefix:
            text = f"{TASK_PREFIX}{text}"
        return self._codec.encode(text)

    def decode(self, ids: Iterable[int]) -> str:
        return self._codec.decode(ids)
