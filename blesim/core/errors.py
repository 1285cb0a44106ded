"""Domain-specific errors for blesim."""


class BlesimError(Exception):
    """Base error for blesim."""


class UnknownCharacteristicError(BlesimError):
    """Raised when an operation names a characteristic absent from the registry."""

    def __init__(self, name: str) -> None:
        super().__init__(f"No such characteristic: {name}")
        self.name = name


class UnknownEncoderError(BlesimError):
    """Raised when an encoder type is not registered."""

    def __init__(self, encoder_type: str) -> None:
        super().__init__(f"Encoder '{encoder_type}' not found")
        self.encoder_type = encoder_type


class InvalidArgumentError(BlesimError):
    """Raised when operator input does not fit the target encoder."""


class InsufficientArgumentsError(InvalidArgumentError):
    """Raised when fewer tokens were given than the encoder requires."""


class ConfigValidationError(BlesimError):
    """Raised when a device file does not conform to schema or semantics."""


class ConfigLoadError(BlesimError):
    """Raised when reading device configuration sources fails."""


class DeviceSelectionError(BlesimError):
    """Raised when a device argument cannot be resolved to a single config."""


class ActivationInProgressError(BlesimError):
    """Raised when an activation is requested while another one is pending."""


class SwitchTimeoutError(BlesimError):
    """Raised when the transport does not confirm a switched device in time."""


class TransportError(BlesimError):
    """Base transport error."""


class AdvertisingError(TransportError):
    """Raised when the transport reports an advertising-start failure."""


class ServiceRegistrationError(TransportError):
    """Raised when the transport rejects the GATT service tree."""


class AdapterPoweredOffError(TransportError):
    """Raised into an in-flight activation step when the adapter leaves poweredOn."""


class ActivationCancelledError(BlesimError):
    """Raised to an activation's caller when deactivate tears the activation down."""
