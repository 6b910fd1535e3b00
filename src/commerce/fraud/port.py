"""Fraud-scoring port: consulted before a checkout reserves stock."""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum


class FraudAction(Enum):
    ALLOW = "allow"
    REVIEW = "review"
    BLOCK = "block"


@dataclass(frozen=True)
class FraudAssessment:
    score: float
    action: FraudAction
    reasons: tuple[str, ...] = ()


class FraudScorer(ABC):
    @abstractmethod
    def assess(self, order_id: str, customer_id: str | None, amount: float) -> FraudAssessment:
        """Score a checkout and recommend allow, review or block."""
        ...
