"""Error taxonomy shared by the domain modules.

Domain functions raise these; ``drwheels.main`` maps each one to a single
JSON response of the form ``{"error": message}``.
"""
from typing import List, Optional


class MarketplaceError(ValueError):
    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationFailed(MarketplaceError):
    status_code = 400

    def __init__(self, details: Optional[List[dict]] = None, message: str = "Validation failed"):
        super().__init__(message)
        self.details = details or []


class Unauthorized(MarketplaceError):
    status_code = 401


class Forbidden(MarketplaceError):
    status_code = 403

    def __init__(self, message: str = "Not authorized"):
        super().__init__(message)


class NotFound(MarketplaceError):
    status_code = 404


# Duplicates surface as 400, not 409
class Conflict(MarketplaceError):
    status_code = 400


class InvalidState(MarketplaceError):
    status_code = 400
