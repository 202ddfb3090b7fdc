"""DeviceLink Database Models."""

from devicelink.models.pairing import PairingRequest
from devicelink.models.credential import DeviceCredential

__all__ = [
    "PairingRequest",
    "DeviceCredential",
]
