"""Typed outcomes raised by the pairing and token services.

Routers translate these into HTTP errors; each carries a stable wire
``code`` and the status it maps to.
"""


class DeviceLinkError(Exception):
    code = "error"
    status_code = 400
    message = "Request failed"

    def __init__(self, message: str | None = None):
        super().__init__(message or self.message)

    @property
    def detail(self) -> dict:
        return {"error": self.code, "message": str(self)}


class InvalidOrExpiredCode(DeviceLinkError):
    code = "invalid_or_expired_code"
    status_code = 404
    message = "This code is invalid or has expired"


class InvalidCode(DeviceLinkError):
    code = "invalid_code"
    status_code = 404
    message = "Pairing code is invalid or has expired. Start pairing again"


class NotLinkedYet(DeviceLinkError):
    code = "not_linked_yet"
    status_code = 425
    message = "Device not linked yet"


class InvalidToken(DeviceLinkError):
    code = "invalid_token"
    status_code = 401
    message = "Invalid or expired token"


class DeviceNotFound(DeviceLinkError):
    code = "not_found"
    status_code = 404
    message = "Device not found or access denied"


class InvalidDeviceName(DeviceLinkError):
    code = "invalid_device_name"
    status_code = 400
    message = "Device name must be 1-100 characters"


class InvalidFingerprint(DeviceLinkError):
    code = "invalid_fingerprint"
    status_code = 400
    message = "Device fingerprint must be 64 lowercase hex characters"


class CredentialConflict(DeviceLinkError):
    code = "credential_conflict"
    status_code = 409
    message = "Could not store device credential, retry"


class PairingUnavailable(DeviceLinkError):
    code = "pairing_unavailable"
    status_code = 503
    message = "Could not allocate a pairing code, retry"
