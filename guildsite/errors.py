"""
Error taxonomy

Backup trigger errors are reported in the HTTP response, chat errors go back
to the sending connection only, storage errors degrade to empty results.
None of them are fatal to the process.
"""


class GuildsiteError(Exception):
    """Base class for all application errors"""


# Backup trigger

class ConfigurationError(GuildsiteError):
    """No backup destination configured"""


class CooldownError(GuildsiteError):
    """Automatic trigger requested too soon after the last one"""

    def __init__(self, remaining_ms: int):
        super().__init__("Cooldown")
        self.remaining_ms = remaining_ms


class DeliveryError(GuildsiteError):
    """Webhook could not be reached or did not acknowledge"""


# Chat

class ChatError(GuildsiteError):
    """Rejected chat send"""


class RateLimitedError(ChatError):
    pass


class ValidationError(ChatError):
    pass


class UnsupportedTypeError(ChatError):
    pass


# Files

class StorageError(GuildsiteError):
    """Backing file unreadable or unwritable"""


class UploadRejectedError(GuildsiteError):
    def __init__(self, message: str, status_code: int = 400):
        super().__init__(message)
        self.status_code = status_code
