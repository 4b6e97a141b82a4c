class InventoryError(ValueError):
    """Base class for failures raised by reservation operations."""


class ValidationError(InventoryError):
    pass


class ConflictError(InventoryError):
    pass


class AuthorizationError(InventoryError):
    pass


class StateError(InventoryError):
    pass


class EntitlementError(InventoryError):
    pass


class InventoryStorageError(RuntimeError):
    pass
