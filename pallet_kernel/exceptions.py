"""
Typed Exception Hierarchy for the Pallet Kernel.

Every error has a typed exception class (catch by type, not message), a
machine-readable ``code`` class attribute, and structured attributes that
carry enough detail for the end user to act (ids, requested quantity,
available space).

    PalletKernelError (base)
    |
    +-- InvalidReferenceError
    |   +-- ProductNotFoundError
    |   +-- LocationNotFoundError
    |   +-- DriverNotFoundError
    |   +-- TaskNotFoundError
    |   +-- LocationKindError
    |
    +-- CapacityExceededError
    +-- InsufficientStockError
    |
    +-- VerificationFailedError
    |   +-- ScanModeError
    |   +-- DriverMismatchError
    |
    +-- InvalidTransitionError
    |   +-- PalletAlreadyScannedError
    |
    +-- ValidationError
    |   +-- InvalidQuantityError
    |   +-- InvalidCapacityError
    |   +-- InvalidExpiryDaysError
    |   +-- DuplicateProductNameError
    |   +-- DuplicateQrCodeError
    |   +-- DuplicateDriverEmailError
    |
    +-- ReferencedEntityError
        +-- ProductReferencedError
        +-- LocationReferencedError

Category        | Code                     | When Raised
----------------|--------------------------|------------------------------------
Reference       | INVALID_REFERENCE        | Id does not resolve
                | PRODUCT_NOT_FOUND        | Product id unknown
                | LOCATION_NOT_FOUND       | Location id unknown
                | DRIVER_NOT_FOUND         | Driver id unknown
                | TASK_NOT_FOUND           | Task id unknown
                | LOCATION_KIND_MISMATCH   | Location kind not valid for route
Capacity        | CAPACITY_EXCEEDED        | Destination cannot hold quantity
Stock           | INSUFFICIENT_STOCK       | FEFO cannot satisfy withdrawal
Verification    | VERIFICATION_FAILED      | Scanned code does not match
                | SCAN_MODE_MISMATCH       | Scan mode invalid for task status
                | DRIVER_MISMATCH          | Scanning driver is not assignee
Transition      | INVALID_TRANSITION       | Status change not on allowed path
                | PALLET_ALREADY_SCANNED   | Edit would drop scanned pallets
Validation      | INVALID_QUANTITY         | Pallet quantity < 1
                | INVALID_CAPACITY         | Capacity missing or not positive
                | INVALID_EXPIRY_DAYS      | expiry_days not a positive int
                | DUPLICATE_PRODUCT_NAME   | Case-insensitive name collision
                | DUPLICATE_QR_CODE        | Location/product code collision
                | DUPLICATE_DRIVER_EMAIL   | Driver email already registered
Referenced      | PRODUCT_REFERENCED       | Product still stocked or tasked
                | LOCATION_REFERENCED      | Location still stocked or tasked

None of these are retried automatically.  Every operation validates before
mutating, so an error always leaves state unchanged.
"""


class PalletKernelError(Exception):
    """
    Base exception for all pallet kernel errors.

    All subclasses must have a `code` class attribute for machine-readable
    error identification.
    """

    code: str = "PALLET_KERNEL_ERROR"


# Reference errors


class InvalidReferenceError(PalletKernelError):
    """An id does not resolve to an existing entity."""

    code: str = "INVALID_REFERENCE"

    def __init__(self, entity_type: str, entity_id: str, message: str | None = None):
        self.entity_type = entity_type
        self.entity_id = entity_id
        super().__init__(message or f"{entity_type} not found: {entity_id}")


class ProductNotFoundError(InvalidReferenceError):
    code: str = "PRODUCT_NOT_FOUND"

    def __init__(self, product_id: str):
        self.product_id = product_id
        super().__init__("Product", product_id)


class LocationNotFoundError(InvalidReferenceError):
    code: str = "LOCATION_NOT_FOUND"

    def __init__(self, location_id: str):
        self.location_id = location_id
        super().__init__("Location", location_id)


class DriverNotFoundError(InvalidReferenceError):
    code: str = "DRIVER_NOT_FOUND"

    def __init__(self, driver_id: str):
        self.driver_id = driver_id
        super().__init__("Driver", driver_id)


class TaskNotFoundError(InvalidReferenceError):
    code: str = "TASK_NOT_FOUND"

    def __init__(self, task_id: str):
        self.task_id = task_id
        super().__init__("Task", task_id)


class LocationKindError(InvalidReferenceError):
    """Location exists but its kind is not valid for the requested route."""

    code: str = "LOCATION_KIND_MISMATCH"

    def __init__(self, location_id: str, actual_kind: str, expected_kinds: list[str]):
        self.location_id = location_id
        self.actual_kind = actual_kind
        self.expected_kinds = expected_kinds
        super().__init__(
            "Location",
            location_id,
            f"Location {location_id} is a {actual_kind}, "
            f"expected one of: {', '.join(expected_kinds)}",
        )


# Capacity and stock


class CapacityExceededError(PalletKernelError):
    """Destination cannot hold the requested number of pallets."""

    code: str = "CAPACITY_EXCEEDED"

    def __init__(self, location_id: str, requested: int, available: int, capacity: int):
        self.location_id = location_id
        self.requested = requested
        self.available = available
        self.capacity = capacity
        super().__init__(
            f"Location {location_id} cannot hold {requested} pallets: "
            f"{available} of {capacity} available"
        )


class InsufficientStockError(PalletKernelError):
    """FEFO withdrawal cannot satisfy the requested quantity."""

    code: str = "INSUFFICIENT_STOCK"

    def __init__(self, product_id: str, requested: int, available: int):
        self.product_id = product_id
        self.requested = requested
        self.available = available
        super().__init__(
            f"Insufficient stock for product {product_id}: "
            f"requested {requested}, available {available}"
        )


# Scan verification


class VerificationFailedError(PalletKernelError):
    """Scanned code does not match what the task expects."""

    code: str = "VERIFICATION_FAILED"

    def __init__(self, task_id: str, scanned_code: str, reason: str):
        self.task_id = task_id
        self.scanned_code = scanned_code
        self.reason = reason
        super().__init__(f"Scan rejected for task {task_id}: {reason}")


class ScanModeError(VerificationFailedError):
    """Scan mode is not valid for the task's current status."""

    code: str = "SCAN_MODE_MISMATCH"

    def __init__(self, task_id: str, scanned_code: str, mode: str, status: str):
        self.mode = mode
        self.status = status
        super().__init__(
            task_id, scanned_code, f"{mode} scan not allowed while task is {status}"
        )


class DriverMismatchError(VerificationFailedError):
    """Scanning driver is not the driver assigned to the task."""

    code: str = "DRIVER_MISMATCH"

    def __init__(self, task_id: str, scanned_code: str, driver_id: str, assigned_to: str):
        self.driver_id = driver_id
        self.assigned_to = assigned_to
        super().__init__(
            task_id, scanned_code, f"driver {driver_id} is not assigned to this task"
        )


# Transitions


class InvalidTransitionError(PalletKernelError):
    """Status change is not on the allowed path."""

    code: str = "INVALID_TRANSITION"

    def __init__(
        self,
        entity_id: str,
        current_status: str,
        requested_status: str,
        message: str | None = None,
    ):
        self.entity_id = entity_id
        self.current_status = current_status
        self.requested_status = requested_status
        super().__init__(
            message
            or f"Invalid transition for {entity_id}: {current_status} -> {requested_status}"
        )


class PalletAlreadyScannedError(InvalidTransitionError):
    """Shrinking a pallet set would drop pallets that were already scanned."""

    code: str = "PALLET_ALREADY_SCANNED"

    def __init__(self, task_id: str, requested_quantity: int, waiting_pallets: int):
        self.requested_quantity = requested_quantity
        self.waiting_pallets = waiting_pallets
        super().__init__(
            task_id,
            "scanned",
            "dropped",
            f"Task {task_id} cannot shrink to {requested_quantity} pallets: "
            f"only {waiting_pallets} waiting pallets can be dropped",
        )


# Input validation


class ValidationError(PalletKernelError):
    """Base exception for rejected input values."""

    code: str = "VALIDATION_ERROR"


class InvalidQuantityError(ValidationError):
    code: str = "INVALID_QUANTITY"

    def __init__(self, quantity: int):
        self.quantity = quantity
        super().__init__(f"Pallet quantity must be at least 1, got {quantity}")


class InvalidCapacityError(ValidationError):
    code: str = "INVALID_CAPACITY"

    def __init__(self, kind: str, capacity: int | None):
        self.kind = kind
        self.capacity = capacity
        super().__init__(f"A {kind} requires a positive capacity, got {capacity}")


class InvalidExpiryDaysError(ValidationError):
    code: str = "INVALID_EXPIRY_DAYS"

    def __init__(self, expiry_days: int):
        self.expiry_days = expiry_days
        super().__init__(f"expiry_days must be a positive integer, got {expiry_days}")


class DuplicateProductNameError(ValidationError):
    code: str = "DUPLICATE_PRODUCT_NAME"

    def __init__(self, name: str):
        self.name = name
        super().__init__(f"A product named '{name}' already exists")


class DuplicateQrCodeError(ValidationError):
    code: str = "DUPLICATE_QR_CODE"

    def __init__(self, qr_code: str):
        self.qr_code = qr_code
        super().__init__(f"QR code already in use: {qr_code}")


class DuplicateDriverEmailError(ValidationError):
    code: str = "DUPLICATE_DRIVER_EMAIL"

    def __init__(self, email: str):
        self.email = email
        super().__init__(f"A driver with email {email} is already registered")


# Referenced entities


class ReferencedEntityError(PalletKernelError):
    """Entity cannot be deleted while other records reference it."""

    code: str = "ENTITY_REFERENCED"


class ProductReferencedError(ReferencedEntityError):
    code: str = "PRODUCT_REFERENCED"

    def __init__(self, product_id: str, reason: str):
        self.product_id = product_id
        self.reason = reason
        super().__init__(f"Product {product_id} cannot be deleted: {reason}")


class LocationReferencedError(ReferencedEntityError):
    code: str = "LOCATION_REFERENCED"

    def __init__(self, location_id: str, reason: str):
        self.location_id = location_id
        self.reason = reason
        super().__init__(f"Location {location_id} cannot be deleted: {reason}")
