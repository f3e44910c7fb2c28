import math

import pytest

from aionml.bert import (
    EMBEDDING_DIM,
    MAX_SEQ_LENGTH,
    TOKEN_CLS,
    TOKEN_PAD,
    TOKEN_SEP,
    TOKEN_UNK,
    BertEngine,
    Intent,
    load_vocab,
)


def _constant_encoder(inputs):
    return [1.0] * EMBEDDING_DIM


class _Recorder:
    def __init__(self):
        self.calls = []

    def __call__(self, inputs):
        self.calls.append(list(inputs))
        return [1.0] * EMBEDDING_DIM


def _fallback_engine(encoder=_constant_encoder):
    return BertEngine(encoder, None)


def test_fallback_vocab():
    vocab = load_vocab(None)
    assert len(vocab) == 100
    assert vocab[:4] == ["[PAD]", "[UNK]", "[CLS]", "[SEP]"]
    assert vocab[9] == "start"
    assert vocab[10] is None


def test_missing_vocab_file_falls_back(tmp_path):
    vocab = load_vocab(tmp_path / "absent.txt")
    assert len(vocab) == 100
    assert vocab[5] == "open"


def test_vocab_file_read_line_by_line(tmp_path):
    path = tmp_path / "vocab.txt"
    path.write_text("[PAD]\nhello\nworld\n", encoding="utf-8")
    assert load_vocab(path) == ["[PAD]", "hello", "world"]


def test_tokenize_known_and_unknown_words():
    engine = _fallback_engine()
    tokens = engine.tokenize("Open\tFILE  now")
    assert tokens[:5] == [TOKEN_CLS, 5, 4, TOKEN_UNK, TOKEN_SEP]
    assert len(tokens) == MAX_SEQ_LENGTH
    assert set(tokens[5:]) == {TOKEN_PAD}


def test_tokenize_with_file_vocab(tmp_path):
    path = tmp_path / "vocab.txt"
    path.write_text("a\nhello\nworld\nhello\n", encoding="utf-8")
    engine = BertEngine(_constant_encoder, path)
    assert engine.tokenize("world HELLO")[:4] == [TOKEN_CLS, 2, 1, TOKEN_SEP]


def test_tokenize_truncates_long_text():
    engine = _fallback_engine()
    tokens = engine.tokenize(" ".join(["zzz"] * 600))
    assert len(tokens) == MAX_SEQ_LENGTH
    assert tokens[0] == TOKEN_CLS
    assert tokens[-1] == TOKEN_SEP
    assert set(tokens[1:-1]) == {TOKEN_UNK}


def test_encode_passes_token_ids_as_floats():
    recorder = _Recorder()
    engine = _fallback_engine(recorder)
    embedding = engine.encode("kill")
    assert len(embedding) == EMBEDDING_DIM
    assert recorder.calls[0][:3] == [float(TOKEN_CLS), 8.0, float(TOKEN_SEP)]
    assert len(recorder.calls[0]) == MAX_SEQ_LENGTH


def test_encode_rejects_wrong_length():
    engine = _fallback_engine(lambda inputs: [0.0] * 3)
    with pytest.raises(ValueError):
        engine.encode("open file")


@pytest.mark.parametrize(
    "text, intent, confidence",
    [
        ("Open the report", Intent.FILE_OPERATION, 0.85),
        ("kill process 42", Intent.PROCESS_CONTROL, 0.82),
        ("show CPU usage", Intent.SYSTEM_QUERY, 0.88),
        ("there is a bug here", Intent.CODE_ASSISTANCE, 0.80),
        ("search for notes", Intent.SEARCH, 0.78),
        ("help me", Intent.HELP, 0.90),
        ("good morning", Intent.UNKNOWN, 0.40),
    ],
)
def test_classify_intent(text, intent, confidence):
    result = _fallback_engine().classify_intent(text)
    assert result.intent is intent
    assert result.confidence == pytest.approx(confidence)
    assert result.normalized_text == text


def test_classify_intent_runs_encoder():
    recorder = _Recorder()
    _fallback_engine(recorder).classify_intent("help")
    assert len(recorder.calls) == 1


def test_similarity_of_identical_embeddings():
    engine = _fallback_engine()
    assert engine.similarity("open", "close") == pytest.approx(1.0)


def test_similarity_of_orthogonal_embeddings():
    def encoder(inputs):
        vector = [0.0] * EMBEDDING_DIM
        vector[0 if inputs[1] == 5.0 else 1] = 1.0
        return vector

    engine = _fallback_engine(encoder)
    assert engine.similarity("open", "close") == pytest.approx(0.0)
    assert engine.similarity("open", "open") == pytest.approx(1.0)


def test_similarity_with_zero_embedding_is_nan():
    engine = _fallback_engine(lambda inputs: [0.0] * EMBEDDING_DIM)
    result = engine.similarity("a", "b")
    assert str(result) == "nan"
    assert math.isnan(result)