"""Shared fixtures: synthetic instruction streams for made-up ISAs.

Each synthetic ISA draws its instructions from a fixed vocabulary built over
its own byte alphabet, so streams of different ISAs have disjoint bigram
structure while staying well below the high-entropy threshold and free of
printable runs.
"""

from random import Random

import pytest

from coderec import ScanConfig, load_corpus

KIB = 1024

_ALPHABETS = {
    "x86": bytes(range(0x80, 0xC0)),
    "arm": bytes(range(0xC0, 0x100)) + bytes(range(0x10, 0x20)),
    "mips": bytes(range(0x00, 0x09)) + bytes(range(0x0E, 0x10)) + bytes(range(0x7F, 0x80)),
}

# Instruction lengths per ISA: variable for x86, fixed width for the others
_LENGTHS = {
    "x86": [1, 2, 2, 3, 3, 3, 4, 5, 6],
    "arm": [4],
    "mips": [4],
}

ENGLISH = (
    b"The quick brown fox jumps over the lazy dog. Firmware images often "
    b"carry version banners, copyright notices and log messages such as "
    b"'ERROR: initialization failed' next to their machine code.\n"
)


def _vocabulary(isa: str) -> list[bytes]:
    rng = Random(f"vocab:{isa}")
    alphabet = _ALPHABETS[isa]
    return [
        bytes(rng.choice(alphabet) for _ in range(rng.choice(_LENGTHS[isa])))
        for _ in range(32)
    ]


def make_code(isa: str, size: int, seed: int = 0) -> bytes:
    """Pseudo-random instruction stream of exactly ``size`` bytes."""
    vocab = _vocabulary(isa)
    rng = Random(f"{isa}:{seed}")
    out = bytearray()
    while len(out) < size:
        out += rng.choice(vocab)
    return bytes(out[:size])


def make_text(size: int) -> bytes:
    return (ENGLISH * (size // len(ENGLISH) + 1))[:size]


def make_random(size: int, seed: int = 7) -> bytes:
    return Random(seed).randbytes(size)


@pytest.fixture(scope="session")
def corpus():
    return load_corpus({
        "x86": make_code("x86", 128 * KIB, seed=1),
        "arm": make_code("arm", 128 * KIB, seed=1),
    })


@pytest.fixture
def config() -> ScanConfig:
    return ScanConfig(parallelism=4, windows_per_worker=4)
