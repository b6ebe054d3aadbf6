"""Tests for :mod:`coderec.corpus`."""

import dataclasses
from pathlib import Path

import numpy as np
import pytest

from coderec.corpus import (
    CorpusEntry,
    CorpusError,
    CorpusModel,
    is_code_label,
    load_corpus,
)
from coderec.stats import TRIGRAM_BINS, extract_stats, kl_divergence

from conftest import KIB, make_code, make_random, make_text


def _entry(model: CorpusModel, label: str) -> CorpusEntry:
    return dict(zip(model.labels(), model.entries()))[label]


def test_distributions_are_normalised(corpus) -> None:
    for entry in corpus.entries():
        assert entry.bigram_dist.sum() == pytest.approx(1.0, abs=1e-9)
        assert entry.trigram_mass() == pytest.approx(1.0, abs=1e-9)
        assert entry.trigram_floor > 0
        assert entry.sample_count == 128 * KIB


def test_labels_keep_source_order(corpus) -> None:
    assert corpus.labels() == ("x86", "arm")
    assert "arm" in corpus
    assert "sparc" not in corpus
    assert [e.label for e in corpus] == ["x86", "arm"]


def test_entries_are_immutable(corpus) -> None:
    entry = _entry(corpus, "x86")
    with pytest.raises(ValueError):
        entry.bigram_dist[0] = 1.0
    with pytest.raises(dataclasses.FrozenInstanceError):
        entry.label = "arm"


def test_listed_trigrams_exceed_the_floor() -> None:
    entry = CorpusEntry.from_samples("toy", [b"abcabcabc"])
    assert entry.trigram_keys.tolist() == [0x616263, 0x626361, 0x636162]
    assert np.all(entry.trigram_probs > entry.trigram_floor)


def test_divergences_are_non_negative(corpus) -> None:
    windows = [
        make_code("x86", 4096, seed=5),
        make_code("arm", 4096, seed=5),
        make_code("mips", 4096, seed=5),
        make_random(4096),
        make_text(4096),
        bytes(4096),
    ]
    for data in windows:
        for bigram, trigram in corpus.score(extract_stats(data)).values():
            assert bigram >= 0
            assert trigram >= 0


def test_vectorised_scores_match_per_entry(corpus) -> None:
    stats = extract_stats(make_code("arm", 3000, seed=9))
    bi, tri = corpus.divergences(stats)
    tri_p = stats.trigram_counts / stats.trigram_total
    for i, entry in enumerate(corpus.entries()):
        listed = dict(zip(entry.trigram_keys.tolist(), entry.trigram_probs.tolist()))
        tri_q = np.array([listed.get(k, entry.trigram_floor) for k in stats.trigram_keys.tolist()])
        b = kl_divergence(stats.bigram_hist / stats.bigram_total, entry.bigram_dist)
        t = kl_divergence(tri_p, tri_q)
        assert bi[i] == pytest.approx(b)
        assert tri[i] == pytest.approx(t)


def test_matching_isa_scores_lowest(corpus) -> None:
    scores = corpus.score(extract_stats(make_code("x86", 8 * KIB, seed=3)))
    assert scores["x86"][0] < 1.0 < 5.0 < scores["arm"][0]
    assert scores["x86"][1] < scores["arm"][1]


def test_divergences_reject_windows_without_trigrams(corpus) -> None:
    with pytest.raises(ValueError):
        corpus.divergences(extract_stats(b"ab"))


def test_pseudo_labels_are_not_code() -> None:
    assert is_code_label("x86")
    assert not is_code_label("_words")
    assert not is_code_label("unknown")


def test_model_rejects_duplicates_and_empty() -> None:
    entry = CorpusEntry.from_samples("x86", [make_code("x86", 1024)])
    with pytest.raises(CorpusError, match="Duplicate"):
        CorpusModel([entry, entry])
    with pytest.raises(CorpusError):
        CorpusModel([])


def test_invalid_samples_are_rejected() -> None:
    with pytest.raises(CorpusError, match="no trigram"):
        CorpusEntry.from_samples("x86", [b"\x90\x90"])
    with pytest.raises(CorpusError):
        CorpusEntry.from_samples("x86", [])
    with pytest.raises(CorpusError):
        CorpusEntry.from_samples("unknown", [b"\x90\x90\x90"])
    with pytest.raises(CorpusError):
        CorpusEntry.from_samples("x86", [b"\x90\x90\x90"], smoothing=0)


def test_unnormalised_entry_is_rejected() -> None:
    entry = CorpusEntry.from_samples("x86", [make_code("x86", 1024)])
    with pytest.raises(CorpusError, match="bigram distribution sums"):
        CorpusEntry(
            label="x86",
            bigram_dist=entry.bigram_dist * 2,
            trigram_keys=entry.trigram_keys,
            trigram_probs=entry.trigram_probs,
            trigram_floor=entry.trigram_floor,
            sample_count=entry.sample_count,
        )
    with pytest.raises(CorpusError, match="trigram distribution sums"):
        CorpusEntry(
            label="x86",
            bigram_dist=entry.bigram_dist,
            trigram_keys=entry.trigram_keys,
            trigram_probs=entry.trigram_probs,
            trigram_floor=entry.trigram_floor * 2,
            sample_count=entry.sample_count,
        )


def test_samples_are_counted_separately() -> None:
    entry = CorpusEntry.from_samples("toy", [b"aaa", b"bbb"])
    # "aab" / "abb" would only appear if the samples were concatenated
    assert entry.trigram_keys.tolist() == [0x616161, 0x626262]
    assert entry.sample_count == 6


def test_load_from_corpus_directory(tmp_path: Path) -> None:
    (tmp_path / "x86.corpus").write_bytes(make_code("x86", 8 * KIB))
    (tmp_path / "arm.corpus").write_bytes(make_code("arm", 8 * KIB))
    (tmp_path / "README").write_text("ignored")

    model = load_corpus(tmp_path)
    assert model.labels() == ("arm", "x86")


def test_load_from_manifest(tmp_path: Path) -> None:
    (tmp_path / "x86").mkdir()
    (tmp_path / "x86" / "a.bin").write_bytes(make_code("x86", 4 * KIB, seed=1))
    (tmp_path / "x86" / "b.bin").write_bytes(make_code("x86", 4 * KIB, seed=2))
    (tmp_path / "words.txt").write_bytes(make_text(4 * KIB))
    (tmp_path / "manifest.yaml").write_text(
        "entries:\n"
        "  - label: x86\n"
        "    files: [x86/a.bin, x86/b.bin]\n"
        "  - label: _words\n"
        "    file: words.txt\n"
    )

    model = load_corpus(tmp_path)
    assert model.labels() == ("x86", "_words")
    assert _entry(model, "x86").sample_count == 8 * KIB

    assert load_corpus(tmp_path / "manifest.yaml").labels() == model.labels()


@pytest.mark.parametrize(
    "manifest",
    [
        "entries: [",
        "labels: []\n",
        "entries:\n  - files: [a.bin]\n",
        "entries:\n  - label: x86\n",
        "entries:\n  - label: x86\n    file: missing.bin\n",
        "entries:\n  - label: x86\n    file: a.bin\n  - label: x86\n    file: a.bin\n",
    ],
)
def test_malformed_manifest(tmp_path: Path, manifest: str) -> None:
    (tmp_path / "a.bin").write_bytes(make_code("x86", KIB))
    path = tmp_path / "corpus.yaml"
    path.write_text(manifest)
    with pytest.raises(CorpusError):
        load_corpus(path)


def test_missing_or_unsupported_sources(tmp_path: Path) -> None:
    with pytest.raises(CorpusError, match="not found"):
        load_corpus(tmp_path / "nope")
    with pytest.raises(CorpusError, match="No .corpus files"):
        load_corpus(tmp_path)

    other = tmp_path / "corpus.bin"
    other.write_bytes(b"\x00" * 16)
    with pytest.raises(CorpusError, match="Unsupported"):
        load_corpus(other)


def test_archive_round_trip(corpus, tmp_path: Path) -> None:
    path = corpus.save(tmp_path / "corpus")
    assert path.suffix == ".npz"

    loaded = CorpusModel.load(path)
    assert loaded.labels() == corpus.labels()

    stats = extract_stats(make_code("arm", 4 * KIB, seed=11))
    for label, (bi, tri) in corpus.score(stats).items():
        assert loaded.score(stats)[label] == pytest.approx((bi, tri))


def test_archive_failing_normalisation_is_rejected(corpus, tmp_path: Path) -> None:
    entry = _entry(corpus, "x86")
    path = tmp_path / "bad.npz"
    np.savez(
        path,
        format_version=np.array(1),
        labels=np.array(["x86"]),
        sample_counts=np.array([entry.sample_count]),
        bigrams=np.stack([entry.bigram_dist * 1.5]),
        trigram_offsets=np.array([0, len(entry.trigram_keys)]),
        trigram_keys=entry.trigram_keys,
        trigram_probs=entry.trigram_probs,
        trigram_floors=np.array([entry.trigram_floor]),
    )
    with pytest.raises(CorpusError, match="sums to"):
        load_corpus(path)


def test_corrupt_archive_is_rejected(tmp_path: Path) -> None:
    path = tmp_path / "corpus.npz"
    path.write_bytes(b"not a zip archive")
    with pytest.raises(CorpusError, match="Malformed"):
        load_corpus(path)

    np.savez(path, labels=np.array(["x86"]))
    with pytest.raises(CorpusError, match="Malformed"):
        load_corpus(path)


def test_trigram_keys_fit_24_bits(corpus) -> None:
    for entry in corpus.entries():
        assert int(entry.trigram_keys.max()) < TRIGRAM_BINS
