"""Error taxonomy.

Every failure that reaches a caller is structured: an ``error`` discriminator
string plus a human readable ``error_message``. Request outcomes carry the
same shape as plain dicts so they can be handed to listeners unchanged;
awaiting a failed request raises :class:`RemoteError` built from that dict.
"""
from typing import Any


class RemoteException(Exception):
    """Base class for everything raised by rippled_remote."""

    default_error = "remoteException"

    def __init__(self, error: str | None = None, error_message: str | None = None, **details: Any):
        self.error = error or self.default_error
        self.error_message = error_message or self.error
        self.details = details
        super().__init__(f"{self.error}: {self.error_message}")

    def to_dict(self) -> dict:
        d = {"error": self.error, "error_message": self.error_message}
        d.update(self.details)
        return d

    @classmethod
    def from_dict(cls, data: dict) -> "RemoteException":
        data = dict(data)
        error = data.pop("error", None) or data.pop("result", None)
        message = data.pop("error_message", None) or data.pop("result_message", None)
        return cls(error, message, **data)


class ConfigurationError(RemoteException):
    """No servers, negative owner counts, invalid configuration. Never retried."""

    default_error = "configurationError"


class LocalError(RemoteException):
    """A request or identity was rejected locally, before anything was sent."""

    default_error = "localError"


class RemoteError(RemoteException):
    """A request failed: remote rejection, disconnect, timeout, unexpected reply."""

    default_error = "remoteError"

    @property
    def remote(self) -> dict | None:
        return self.details.get("remote")


def remote_error(message: dict) -> dict:
    """Wrap an error response from the server into a request failure payload."""
    return {
        "error": "remoteError",
        "error_message": "Remote reported an error.",
        "remote": message,
    }


def disconnected_error(url: str) -> dict:
    return {
        "error": "remoteDisconnected",
        "error_message": f"Connection to {url} was lost.",
    }


def unexpected_error(raw: Any) -> dict:
    return {
        "error": "remoteUnexpected",
        "error_message": "Unexpected response from remote.",
        "raw": raw if isinstance(raw, str) else repr(raw),
    }


def timeout_error(duration: float) -> dict:
    return {
        "error": "timeout",
        "error_message": f"No response within {duration}s.",
    }


def no_servers_error() -> dict:
    return {
        "error": "noServers",
        "error_message": "No servers available.",
    }
