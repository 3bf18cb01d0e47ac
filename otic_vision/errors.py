"""Error taxonomy for the recognition engine."""


class EngineError(Exception):
    """Base class for every error the engine reports to its caller."""


class InvalidInput(EngineError, ValueError):
    """Malformed, empty or unsupported pixel buffer or descriptor."""


class CorruptToken(EngineError):
    """Stored token bytes failed the length, magic or checksum check."""


class StoreUnavailable(EngineError):
    """The token store could not be reached or refused a write."""


class RecognitionTimeout(EngineError, TimeoutError):
    """The full store scan exceeded its deadline."""


class RecognitionCancelled(EngineError):
    """The caller abandoned the recognition attempt."""


class RegistrationConflict(EngineError):
    """A new token's checksum collides with a different registered product."""

    def __init__(self, checksum: int, existing_product_id: str):
        super().__init__(
            f"Token checksum {checksum:016x} already registered to "
            f"product {existing_product_id}"
        )
        self.checksum = checksum
        self.existing_product_id = existing_product_id
