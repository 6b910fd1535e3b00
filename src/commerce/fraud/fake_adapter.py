"""Fake fraud scorer: allows everything unless told otherwise."""

from commerce.fraud.port import FraudAction, FraudAssessment, FraudScorer


class FakeFraudScorer(FraudScorer):
    def __init__(self):
        self.default = FraudAssessment(score=0.05, action=FraudAction.ALLOW)
        self.by_customer: dict[str, FraudAssessment] = {}
        self.calls: list[dict] = []

    def configure(self, score: float, action: FraudAction, customer_id: str | None = None, reasons=()):
        """Set the verdict for one customer, or for everyone when customer_id is None."""
        assessment = FraudAssessment(score=score, action=action, reasons=tuple(reasons))
        if customer_id is None:
            self.default = assessment
        else:
            self.by_customer[customer_id] = assessment

    def assess(self, order_id, customer_id, amount):
        self.calls.append({"order_id": order_id, "customer_id": customer_id, "amount": amount})
        return self.by_customer.get(customer_id, self.default)
