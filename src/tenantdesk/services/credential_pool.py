from __future__ import annotations

import os
import random
from dataclasses import dataclass, field
from typing import Iterable, Mapping, Optional, Tuple


class PoolEmpty(ValueError):
    """No API credentials were configured; fatal at startup."""


@dataclass(frozen=True)
class Credential:
    key: str

    def masked(self) -> str:
        return f"{self.key[:8]}..."

    def __repr__(self) -> str:  # keep keys out of logs and tracebacks
        return f"Credential({self.masked()})"


@dataclass(frozen=True)
class CredentialPool:
    """Immutable set of interchangeable provider API keys.

    ``acquire`` picks uniformly at random (not round-robin) so that repeated
    failures do not always hit the same dead key first. Safe to share between
    threads: nothing in the pool mutates after construction.
    """

    credentials: Tuple[Credential, ...]
    _rng: random.Random = field(default_factory=random.SystemRandom, repr=False, compare=False)

    def __post_init__(self) -> None:
        if not self.credentials:
            raise PoolEmpty("No AI provider API keys configured (set GROQ_API_KEYS or GROQ_API_KEY)")

    @classmethod
    def from_keys(cls, keys: Iterable[str], rng: Optional[random.Random] = None) -> "CredentialPool":
        cleaned = tuple(Credential(k.strip()) for k in keys if k and k.strip())
        if rng is None:
            return cls(cleaned)
        return cls(cleaned, rng)

    @classmethod
    def from_env(cls, env: Optional[Mapping[str, str]] = None) -> "CredentialPool":
        env = env if env is not None else os.environ
        keys = (env.get("GROQ_API_KEYS") or "").split(",")
        single = env.get("GROQ_API_KEY")
        if single:
            keys.append(single)
        # Preserve order, drop duplicates
        unique = list(dict.fromkeys(k.strip() for k in keys if k and k.strip()))
        return cls.from_keys(unique)

    def __len__(self) -> int:
        return len(self.credentials)

    @property
    def size(self) -> int:
        return len(self.credentials)

    def acquire(self) -> Credential:
        return self._rng.choice(self.credentials)
