"""Natural-language front end: whitespace tokenization against a WordPiece
vocabulary, sentence embeddings from a pluggable encoder, keyword intent
classification and cosine similarity."""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from enum import IntEnum
from os import PathLike
from typing import Callable, Sequence

log = logging.getLogger(__name__)

MAX_SEQ_LENGTH = 512
VOCAB_SIZE = 30522
EMBEDDING_DIM = 768

TOKEN_PAD = 0
TOKEN_UNK = 100
TOKEN_CLS = 101
TOKEN_SEP = 102
TOKEN_MASK = 103

FALLBACK_VOCAB_SIZE = 100
_FALLBACK_TOKENS = (
    "[PAD]", "[UNK]", "[CLS]", "[SEP]", "file",
    "open", "close", "process", "kill", "start",
)
_TEXT_LIMIT = 511
_SEPARATORS = " \t\n"

Encoder = Callable[[list[float]], Sequence[float]]


class Intent(IntEnum):
    UNKNOWN = 0
    FILE_OPERATION = 1
    PROCESS_CONTROL = 2
    SYSTEM_QUERY = 3
    CODE_ASSISTANCE = 4
    SEARCH = 5
    HELP = 6


@dataclass
class NlpResult:
    intent: Intent = Intent.UNKNOWN
    confidence: float = 0.0
    entities: str = ""
    normalized_text: str = ""


_RULES: tuple[tuple[tuple[str, ...], Intent, float], ...] = (
    (("open", "file", "delete"), Intent.FILE_OPERATION, 0.85),
    (("kill", "process", "start"), Intent.PROCESS_CONTROL, 0.82),
    (("memory", "cpu", "usage"), Intent.SYSTEM_QUERY, 0.88),
    (("complete", "bug", "code"), Intent.CODE_ASSISTANCE, 0.80),
    (("find", "search"), Intent.SEARCH, 0.78),
    (("help", "how"), Intent.HELP, 0.90),
)
_UNKNOWN_CONFIDENCE = 0.40


def load_vocab(vocab_path: str | PathLike[str] | None) -> list[str | None]:
    """Read one token per line; fall back to a minimal built-in vocabulary.

    In the fallback, only the first few of the entries hold a token.
    """
    if vocab_path is not None:
        try:
            with open(vocab_path, encoding="utf-8", newline="\n") as handle:
                vocab: list[str | None] = [line.split("\n", 1)[0] for line in handle]
        except OSError:
            log.warning("cannot open vocab file %s, using built-in vocabulary", vocab_path)
        else:
            log.info("loaded vocabulary: %d tokens", len(vocab))
            return vocab
    vocab = [None] * FALLBACK_VOCAB_SIZE
    vocab[: len(_FALLBACK_TOKENS)] = _FALLBACK_TOKENS
    return vocab


class BertEngine:
    """Tokenizes text and turns it into embeddings with the given encoder.

    The encoder takes ``MAX_SEQ_LENGTH`` token ids as floats and returns
    ``EMBEDDING_DIM`` floats.
    """

    def __init__(
        self, encoder: Encoder, vocab_path: str | PathLike[str] | None = None
    ) -> None:
        self.encoder = encoder
        self.vocab_path = vocab_path
        self.vocab = load_vocab(vocab_path)
        self._index: dict[str, int] = {}
        for position, token in enumerate(self.vocab):
            if token is not None:
                self._index.setdefault(token, position)
        self.embedding_cache = [0.0] * EMBEDDING_DIM
        log.info("NLP engine initialized with %d vocabulary entries", len(self.vocab))

    @property
    def vocab_size(self) -> int:
        return len(self.vocab)

    def tokenize(self, text: str) -> list[int]:
        """``[CLS]``, one id per lower-cased word, ``[SEP]``, padded to full length."""
        words = text.translate({ord(c): " " for c in _SEPARATORS}).split(" ")
        words = [w for w in words if w]
        room = MAX_SEQ_LENGTH - 2
        tokens = [TOKEN_CLS]
        tokens += [self._index.get(w.lower(), TOKEN_UNK) for w in words[:room]]
        tokens.append(TOKEN_SEP)
        tokens += [TOKEN_PAD] * (MAX_SEQ_LENGTH - len(tokens))
        return tokens

    def encode(self, text: str) -> list[float]:
        """The embedding the encoder gives for the tokenized text."""
        inputs = [float(token) for token in self.tokenize(text)]
        embedding = list(self.encoder(inputs))
        if len(embedding) != EMBEDDING_DIM:
            raise ValueError(
                f"encoder returned {len(embedding)} values, expected {EMBEDDING_DIM}"
            )
        return embedding

    def classify_intent(self, text: str) -> NlpResult:
        """Classify by keyword, after running the text through the encoder."""
        self.encode(text)
        lowered = text[:_TEXT_LIMIT].lower()
        result = NlpResult(
            intent=Intent.UNKNOWN,
            confidence=_UNKNOWN_CONFIDENCE,
            normalized_text=text[:_TEXT_LIMIT],
        )
        for keywords, intent, confidence in _RULES:
            if any(word in lowered for word in keywords):
                result.intent = intent
                result.confidence = confidence
                break
        log.info("intent: %s, confidence: %.2f%%", result.intent.name, result.confidence * 100)
        return result

    def similarity(self, text1: str, text2: str) -> float:
        """Cosine similarity of the two texts' embeddings (NaN if one is zero)."""
        first = self.encode(text1)
        second = self.encode(text2)
        dot = sum(a * b for a, b in zip(first, second))
        norm = math.sqrt(sum(a * a for a in first)) * math.sqrt(sum(b * b for b in second))
        if norm == 0.0:
            return math.nan
        return dot / norm