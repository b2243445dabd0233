"""
Custom exception hierarchy for the model catalog.

Scanner code recovers from most of these locally; the merge engine lets them
surface to the caller.
"""


class ModelCatalogError(Exception):
    """Base exception for all model catalog errors."""
    pass


class DatabaseError(ModelCatalogError):
    """Raised when database operations fail."""
    pass


class FileOperationError(ModelCatalogError):
    """Raised when file move operations fail."""
    pass


class ModelNotFoundError(ModelCatalogError):
    """Raised when a model id does not resolve to a catalog row."""

    def __init__(self, model_id: int, role: str = "model"):
        self.model_id = model_id
        self.role = role
        super().__init__(f"{role.capitalize()} model {model_id} not found")


class MergeError(ModelCatalogError):
    """Raised when a merge cannot be completed."""
    pass
