"""
Custom exceptions for the attribution and commission engine.

The calculators raise these; engine.py turns them into explicit failure
results so callers never have to catch them.
"""


class AttributionError(Exception):
    """Base exception for attribution-related errors."""

    code = "attribution_error"

    def __init__(self, message: str, details: dict = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


class ValidationError(AttributionError):
    """Raised when input validation fails."""

    code = "validation_error"

    def __init__(self, message: str, field: str = None, value=None):
        details = {}
        if field:
            details["field"] = field
        if value is not None:
            details["value"] = value
        super().__init__(message, details)
        self.field = field
        self.value = value


class InvalidDealError(ValidationError):
    """Raised for a non-positive deal amount or a deal not in a computable status."""

    code = "invalid_deal"

    def __init__(self, message: str, deal_id: str = None, field: str = None, value=None):
        super().__init__(message, field=field, value=value)
        if deal_id:
            self.details["deal_id"] = deal_id
        self.deal_id = deal_id


class UnknownModelError(AttributionError):
    """Raised when an attribution model name is not supported."""

    code = "unknown_model"

    def __init__(self, model_name: str):
        super().__init__(f"Unknown attribution model: {model_name}", {"model": model_name})
        self.model_name = model_name


class PartnerNotFoundError(AttributionError):
    """Raised when a partner cannot be found."""

    code = "partner_not_found"

    def __init__(self, partner_id: str):
        super().__init__(f"Partner not found: {partner_id}", {"partner_id": partner_id})
        self.partner_id = partner_id


class ConfigurationError(AttributionError):
    """Raised when configuration is invalid or missing."""

    code = "invalid_config"

    def __init__(self, message: str, setting_key: str = None):
        details = {}
        if setting_key:
            details["setting_key"] = setting_key
        super().__init__(message, details)
        self.setting_key = setting_key


class DatabaseError(AttributionError):
    """Raised when database operations fail."""

    code = "database_error"

    def __init__(self, message: str, operation: str = None, query: str = None):
        details = {}
        if operation:
            details["operation"] = operation
        if query:
            details["query"] = query[:200]  # Truncate long queries
        super().__init__(message, details)
        self.operation = operation
        self.query = query
