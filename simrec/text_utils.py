import hashlib
import math
from typing import Iterable, List, Sequence


def clamp(value: float, lo: float = 0.0, hi: float = 1.0) -> float:
    return max(lo, min(hi, value))


def jaccard_similarity(a: Iterable[str], b: Iterable[str]) -> float:
    set_a, set_b = set(a), set(b)
    if not set_a or not set_b:
        return 0.0
    inter = len(set_a & set_b)
    union = len(set_a) + len(set_b) - inter
    return inter / union if union else 0.0


def token_hash_index(token: str, dimension: int) -> int:
    """Stable bucket for a token: first 4 bytes of SHA-1 (big-endian) mod dimension."""
    digest = hashlib.sha1(token.encode("utf-8")).digest()
    return int.from_bytes(digest[:4], "big") % dimension


def hashed_vector(tokens: Sequence[str], dimension: int) -> List[float]:
    if dimension <= 0:
        raise ValueError("Dimension must be positive")
    vec = [0.0] * dimension
    for tok in tokens:
        vec[token_hash_index(tok, dimension)] += 1.0
    return vec


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    if len(a) != len(b):
        raise ValueError("Vectors must share dimensionality")
    dot = mag_a = mag_b = 0.0
    for x, y in zip(a, b):
        dot += x * y
        mag_a += x * x
        mag_b += y * y
    if mag_a == 0 or mag_b == 0:
        return 0.0
    return dot / (math.sqrt(mag_a) * math.sqrt(mag_b))


def l2_normalize(vector: Sequence[float]) -> List[float]:
    mag = math.sqrt(sum(v * v for v in vector))
    if mag == 0:
        return list(vector)
    return [v / mag for v in vector]
