from __future__ import annotations

import random
from typing import Any, Dict, List, Optional, Sequence

Json = Dict[str, Any]

_rng = random.SystemRandom()


def random_input_bits(n: int, *, rng: Optional[random.Random] = None) -> List[int]:
    """Uniform random bit vector for the hash circuit input."""
    r = rng or _rng
    bits = r.getrandbits(int(n)) if n > 0 else 0
    return [(bits >> i) & 1 for i in range(int(n))]


def summarize_input(bits: Sequence[int]) -> Json:
    ones = sum(1 for b in bits if b == 1)
    return {
        "total_bits": len(bits),
        "ones_count": ones,
        "zeros_count": len(bits) - ones,
        "first_bits": "".join(str(int(b)) for b in bits[:32]),
    }
