# mtls_broker/broker/errors.py


class BrokerError(Exception):
    """Base class for everything the broker raises on purpose."""


class GenerationError(BrokerError):
    """Key/certificate generation failed."""


class StorageError(BrokerError):
    """Reading, writing, copying or deleting a blob failed."""


class NotFoundError(StorageError):
    """An expected file does not exist."""


class PortExhaustionError(BrokerError):
    """No free port could be found in the requested range."""


class BindError(BrokerError):
    """TLS setup or listening failed."""


class TeardownError(BrokerError):
    """Closing a previously bound resource failed."""


class NotBoundError(BrokerError):
    """The operation needs a bound listener and there is none."""


class ClientSecureError(BrokerError):
    """A client tried to connect without key, certificate or trusted authorities."""


class ConnectError(BrokerError):
    """A client could not establish an authenticated channel."""
