"""
Failure taxonomy for the donation-fulfillment pipeline.

The engine raises these internally; `FulfillmentEngine.confirm_donation`
converts them into a `FulfillmentOutcome` so callers never see them escape.
"""
from enum import Enum


class FailureKind(str, Enum):
    ALREADY_DONATED = "already_donated"
    ALREADY_PROCESSING = "already_processing"
    DONOR_NOT_FOUND = "donor_not_found"
    REQUEST_NOT_FOUND = "request_not_found"
    REQUEST_EXPIRED = "request_expired"
    RESERVATION_CONFLICT = "reservation_conflict"
    PERSISTENCE_FAILURE = "persistence_failure"

    @property
    def retryable(self) -> bool:
        return self in (
            FailureKind.ALREADY_PROCESSING,
            FailureKind.RESERVATION_CONFLICT,
            FailureKind.PERSISTENCE_FAILURE,
        )


class FulfillmentError(Exception):
    kind: FailureKind = FailureKind.PERSISTENCE_FAILURE

    def __init__(self, message: str = ""):
        super().__init__(message or self.kind.value)
        self.message = message or self.kind.value


class AlreadyDonated(FulfillmentError):
    kind = FailureKind.ALREADY_DONATED


class AlreadyProcessing(FulfillmentError):
    kind = FailureKind.ALREADY_PROCESSING


class DonorNotFound(FulfillmentError):
    kind = FailureKind.DONOR_NOT_FOUND


class RequestNotFound(FulfillmentError):
    kind = FailureKind.REQUEST_NOT_FOUND


class RequestExpired(FulfillmentError):
    kind = FailureKind.REQUEST_EXPIRED


class ReservationConflict(FulfillmentError):
    kind = FailureKind.RESERVATION_CONFLICT


class PersistenceFailure(FulfillmentError):
    kind = FailureKind.PERSISTENCE_FAILURE
