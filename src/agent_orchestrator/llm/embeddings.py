"""Deterministic stub embeddings for offline and CI runs."""

from __future__ import annotations

from dataclasses import dataclass

Vector = list[float]
STUB_DIMENSIONS = 1536

_FNV_OFFSET = 2_166_136_261
_FNV_PRIME = 16_777_619
_MASK_32 = 0xFFFFFFFF


def fnv1a_32(text: str) -> int:
    """32-bit FNV-1a over UTF-16 code units."""

    value = _FNV_OFFSET
    encoded = text.encode("utf-16-le")
    for index in range(0, len(encoded), 2):
        value ^= encoded[index] | (encoded[index + 1] << 8)
        value = (value * _FNV_PRIME) & _MASK_32
    return value


@dataclass(slots=True)
class StubEmbedder:
    """Hash-seeded pseudo-embeddings; identical text gives identical vectors."""

    model_name: str = "stub"
    dimensions: int = STUB_DIMENSIONS

    def embed(self, texts: list[str]) -> list[Vector]:
        return [self._embed_single(text) for text in texts]

    def _embed_single(self, text: str) -> Vector:
        seed = str(fnv1a_32(text))
        state = _FNV_OFFSET
        vector: Vector = []
        for index in range(self.dimensions):
            state ^= ord(seed[index % len(seed)])
            state = (state * _FNV_PRIME) & _MASK_32
            vector.append(round((state % 100_000) / 100_000 * 2 - 1, 6))
        return vector
