# core/retry.py

import random
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Optional


class Outcome(Enum):
    """Классификация HTTP-ответа для политики повторов"""
    SUCCESS = "success"
    RATE_LIMITED = "rate_limited"
    AUTH_EXPIRED = "auth_expired"
    RETRY = "retry"


def default_classifier(status: int) -> Outcome:
    """2xx - успех, 401 - токен истёк, 429 - лимит, остальное - повтор"""
    if 200 <= status < 300:
        return Outcome.SUCCESS
    if status == 401:
        return Outcome.AUTH_EXPIRED
    if status == 429:
        return Outcome.RATE_LIMITED
    return Outcome.RETRY


@dataclass
class RetryPolicy:
    """Политика повторов: число попыток, база задержки, потолок, джиттер"""
    max_retries: int = 3
    base_delay: float = 1.0
    max_delay: float = 30.0
    jitter: float = 1.0
    classifier: Callable[[int], Outcome] = default_classifier
    rng: random.Random = field(default_factory=random.Random, repr=False)

    def backoff(self, attempt: int) -> float:
        """min(потолок, база * 2^attempt + джиттер)"""
        jitter = self.rng.uniform(0, self.jitter) if self.jitter > 0 else 0.0
        return min(self.max_delay, self.base_delay * (2 ** attempt) + jitter)

    def classify(self, status: int) -> Outcome:
        return self.classifier(status)

    def with_retries(self, max_retries: Optional[int]) -> "RetryPolicy":
        if max_retries is None or max_retries == self.max_retries:
            return self
        return RetryPolicy(
            max_retries=max_retries,
            base_delay=self.base_delay,
            max_delay=self.max_delay,
            jitter=self.jitter,
            classifier=self.classifier,
            rng=self.rng
        )
