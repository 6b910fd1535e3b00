"""Fraud scorer factory, same shape as the payment gateway factory."""

import os

from commerce.fraud.port import FraudScorer

_current_scorer: FraudScorer | None = None


def get_fraud_scorer() -> FraudScorer:
    global _current_scorer
    if _current_scorer is None:
        adapter = os.environ.get("FRAUD_SCORER", "fake")
        if adapter == "fake":
            from commerce.fraud.fake_adapter import FakeFraudScorer

            _current_scorer = FakeFraudScorer()
        else:
            raise ValueError(f"Unknown fraud scorer adapter: {adapter}")
    return _current_scorer


def set_fraud_scorer(scorer: FraudScorer) -> None:
    global _current_scorer
    _current_scorer = scorer


def reset_fraud_scorer() -> None:
    global _current_scorer
    _current_scorer = None
