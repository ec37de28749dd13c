"""Custom exceptions for Construction QA."""

from typing import Optional


class ConstructionQAError(Exception):
    """Base exception for all Construction QA errors."""
    pass


class NotFoundError(ConstructionQAError):
    """A chat, project or document does not exist."""

    def __init__(self, resource: str, resource_id):
        self.resource = resource
        self.resource_id = resource_id
        super().__init__(f"{resource.capitalize()} not found: {resource_id}")


class ConfigurationError(ConstructionQAError):
    """Error in configuration."""
    pass


class UnknownModelError(ConfigurationError):
    """Requested model id is not in the model registry."""

    def __init__(self, model_id: str):
        self.model_id = model_id
        super().__init__(f"Unknown model: {model_id}")


# Provider errors (embedding and completion APIs)

class ProviderError(ConstructionQAError):
    """Error calling an external model provider."""

    def __init__(self, message: str, provider: Optional[str] = None):
        self.provider = provider
        super().__init__(message)


class ProviderRateLimited(ProviderError):
    """Provider answered with a rate-limit (HTTP 429) response."""
    pass


class ProviderPayloadTooLarge(ProviderError):
    """Request exceeded the model's maximum context length."""
    pass


class ProviderQuotaExhausted(ProviderError):
    """Account quota is used up; work can resume once it is replenished."""
    pass


class EmbeddingDimensionError(ConstructionQAError):
    """Two vectors that must be compared have different lengths."""
    pass
