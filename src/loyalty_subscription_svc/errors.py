class SubscriptionError(Exception):
    """Base class for subscription lifecycle errors."""


class UnknownPlanError(SubscriptionError, ValueError):
    def __init__(self, plan) -> None:
        super().__init__(f"Unknown plan: {plan!r}")
        self.plan = plan


class UnknownStatusError(SubscriptionError, ValueError):
    def __init__(self, status) -> None:
        super().__init__(f"Unknown subscription status: {status!r}")
        self.status = status


class StoreUnavailableError(SubscriptionError):
    """The subscription database could not be reached."""


class NotFoundError(SubscriptionError):
    def __init__(self, subscriber_id: str) -> None:
        super().__init__(f"No subscription stored for subscriber {subscriber_id}")
        self.subscriber_id = subscriber_id
