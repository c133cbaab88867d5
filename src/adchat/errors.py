"""Adchat exception hierarchy.

All adchat-specific exceptions inherit from AdChatError so callers can
separate domain failures from programming errors with one except clause.
"""


class AdChatError(Exception):
    """Base exception for all adchat errors."""

    def __init__(self, message: str = "", *, retryable: bool = False) -> None:
        super().__init__(message)
        self.retryable = retryable


class BindingRequiredError(AdChatError):
    """A non-durable conversation id arrived without a usable campaign id."""


class ConversationNotFoundError(AdChatError):
    """Conversation id does not exist or belongs to another owner."""


class MessageValidationError(AdChatError):
    """Conversation context failed structural or tool-contract validation."""


class ToolError(AdChatError):
    """Error executing a tool body."""


class GatewayError(AdChatError):
    """Error communicating with the model-serving gateway."""

    def __init__(self, message: str = "", *, retryable: bool = True) -> None:
        super().__init__(message, retryable=retryable)


class GenerationError(AdChatError):
    """Generation failed in a way that maps to a user-visible fallback text."""

    KINDS = ("unknown_tool", "invalid_tool_input", "tool_repair_failed", "unclassified")

    def __init__(self, message: str = "", *, kind: str = "unclassified") -> None:
        super().__init__(message)
        self.kind = kind if kind in self.KINDS else "unclassified"


class NameConflictError(AdChatError):
    """Every campaign name candidate collided with an existing campaign."""

    def __init__(self, message: str = "", *, avoided: list[str] | None = None) -> None:
        super().__init__(message)
        self.avoided = list(avoided or [])


class CampaignCreationError(AdChatError):
    """Campaign insert failed for a reason other than a name collision."""


class ConfigError(AdChatError):
    """Invalid or missing configuration."""
