"""Unified error codes and custom exceptions.

Error code ranges:
  1xxx: Validation (caller misuse, never retried)
  2xxx: Not found
  3xxx: State / permission
  4xxx: Concurrency
  5xxx: Persistence
  6xxx: Collaborator dependencies
  9xxx: Caller identity
"""


class AppError(Exception):
    """Base application error."""

    def __init__(
        self,
        code: int,
        message: str,
        http_status: int = 500,
    ) -> None:
        self.code = code
        self.message = message
        self.http_status = http_status
        super().__init__(message)


# --- 1xxx: Validation ---

class ValidationError(AppError):
    def __init__(self, detail: str) -> None:
        super().__init__(1001, f"Validation failed: {detail}", 422)


# --- 2xxx: Not found ---

class NotFoundError(AppError):
    def __init__(self, message: str, code: int = 2000) -> None:
        super().__init__(code, message, 404)


class OrderNotFoundError(NotFoundError):
    def __init__(self, order_id: str) -> None:
        super().__init__(f"Order not found: {order_id}", 2001)


class MilestoneNotFoundError(NotFoundError):
    def __init__(self, order_id: str, milestone_id: str) -> None:
        super().__init__(f"Milestone {milestone_id} not found in order {order_id}", 2002)


class PaymentNotFoundError(NotFoundError):
    def __init__(self, order_id: str, payment_id: str) -> None:
        super().__init__(f"Payment {payment_id} not found in order {order_id}", 2003)


# --- 3xxx: State / permission ---

class InvalidStateTransitionError(AppError):
    def __init__(self, detail: str) -> None:
        super().__init__(3001, f"Invalid state transition: {detail}", 409)


class PermissionDeniedError(AppError):
    def __init__(self, detail: str) -> None:
        super().__init__(3002, f"Permission denied: {detail}", 403)


# --- 4xxx: Concurrency ---

class ConcurrentModificationError(AppError):
    def __init__(self, order_id: str, attempts: int) -> None:
        super().__init__(
            4001,
            f"Order {order_id} was modified concurrently; gave up after {attempts} attempts",
            409,
        )


class VersionConflictError(Exception):
    """Raised by a store when a conditional write loses the compare-and-swap.

    Internal signal only: the engine retries and surfaces ConcurrentModificationError.
    """

    def __init__(self, order_id: str, expected_version: int) -> None:
        self.order_id = order_id
        self.expected_version = expected_version
        super().__init__(f"Version conflict on {order_id}: expected {expected_version}")


# --- 5xxx: Persistence ---

class PersistenceError(AppError):
    def __init__(self, detail: str) -> None:
        super().__init__(5001, f"Persistence failure: {detail}", 503)


# --- 6xxx: Collaborators ---

class DependencyError(AppError):
    def __init__(self, service: str, detail: str) -> None:
        self.service = service
        super().__init__(6001, f"{service} call failed: {detail}", 502)


# --- 9xxx: Caller identity ---

class UnauthenticatedError(AppError):
    def __init__(self) -> None:
        super().__init__(9001, "Missing actor identity", 401)
