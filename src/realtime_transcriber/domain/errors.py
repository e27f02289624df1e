class TranscriberError(Exception):
    pass


class ConfigurationError(TranscriberError):
    pass


class HandshakeError(TranscriberError):
    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class ProtocolViolation(TranscriberError):
    pass


class TransportError(TranscriberError):
    pass


class ApplicationError(TranscriberError):
    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class InvalidStateError(TranscriberError):
    pass


class ConduitOverflowError(TranscriberError):
    pass


class ConduitCompleted(TranscriberError):
    pass
