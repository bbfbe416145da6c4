"""Error kinds raised while relaying a call.

``close_code`` is the WebSocket close code used when the error ends a session.
"""

from __future__ import annotations


class RelayError(Exception):
    close_code: int = 1011
    default_detail: str = "Relay error"

    def __init__(self, detail: str | None = None) -> None:
        super().__init__(detail or self.default_detail)
        self.detail = detail or self.default_detail


class MalformedMessageError(RelayError):
    close_code = 1007
    default_detail = "Malformed message."


class LegDisconnectedError(RelayError):
    close_code = 1000
    default_detail = "Connection closed."

    def __init__(self, leg: str, detail: str | None = None) -> None:
        super().__init__(detail)
        self.leg = leg


class UnsupportedCodecError(RelayError):
    close_code = 1003
    default_detail = "Unsupported media format."
