"""
USB Transport
=============

Both bricks enumerate with the LEGO vendor id:

    NXT  0694:0002  bulk endpoints, OUT 0x01 / IN 0x82, 64 byte packets
    EV3  0694:0005  HID interrupt endpoints, OUT 0x01 / IN 0x81,
                    1024 byte reports

The USB channel carries the same length-prefixed messages as the serial
transport. On the EV3 every message travels in a fixed size HID report,
so writes are zero-padded to the report size and whatever follows the
message in the last report read is discarded once the Connection has
taken the complete reply (see end_of_message()).

Access to the device goes through pyusb (libusb backend). On Linux the
HID driver usually owns the EV3 interface and is detached on open.
"""

import logging
from dataclasses import dataclass
from typing import Final, Optional

import usb.core
import usb.util

from brick_sdk.comms.transport import DEFAULT_TIMEOUT, Transport
from brick_sdk.errors import TransportError

# Configure module logger
logger = logging.getLogger(__name__)


# =============================================================================
# Device Profiles
# =============================================================================

LEGO_VENDOR_ID: Final[int] = 0x0694

USB_INTERFACE: Final[int] = 0


@dataclass(frozen=True)
class UsbProfile:
    """
    USB identity and endpoint layout of one brick model.

    Attributes:
        name: Model name for logs.
        vendor_id: USB vendor id.
        product_id: USB product id.
        out_endpoint: Endpoint address for host-to-brick transfers.
        in_endpoint: Endpoint address for brick-to-host transfers.
        packet_size: Size of one USB read.
        padded: True if every write must fill a whole report.
    """

    name: str
    vendor_id: int
    product_id: int
    out_endpoint: int
    in_endpoint: int
    packet_size: int
    padded: bool = False


NXT_USB: Final[UsbProfile] = UsbProfile(
    "NXT", LEGO_VENDOR_ID, 0x0002, 0x01, 0x82, 64,
)

EV3_USB: Final[UsbProfile] = UsbProfile(
    "EV3", LEGO_VENDOR_ID, 0x0005, 0x01, 0x81, 1024, padded=True,
)


# =============================================================================
# USB Transport
# =============================================================================

class UsbTransport(Transport):
    """
    Length-prefixed transport over USB using pyusb.

    Args:
        profile: Device profile (NXT_USB or EV3_USB).
        timeout: Read/write timeout in seconds.
    """

    length_prefixed = True

    def __init__(self, profile: UsbProfile, timeout: float = DEFAULT_TIMEOUT):
        super().__init__(timeout)
        self.profile = profile
        self._device = None
        self._buffer = bytearray()

    @property
    def is_open(self) -> bool:
        return self._device is not None

    @property
    def _timeout_ms(self) -> int:
        return int(self.timeout * 1000)

    def open(self) -> None:
        """
        Find the brick, detach any kernel driver and claim the interface.

        Raises:
            TransportError: If no brick is attached or it cannot be claimed.
        """
        profile = self.profile
        logger.info(
            "Opening USB %s (%04X:%04X)",
            profile.name, profile.vendor_id, profile.product_id,
        )

        try:
            device = usb.core.find(
                idVendor=profile.vendor_id, idProduct=profile.product_id
            )
        except usb.core.NoBackendError as e:
            raise TransportError(f"No libusb backend available: {e}") from e

        if device is None:
            raise TransportError(
                f"No {profile.name} brick found on USB "
                f"({profile.vendor_id:04X}:{profile.product_id:04X})"
            )

        try:
            if device.is_kernel_driver_active(USB_INTERFACE):
                device.detach_kernel_driver(USB_INTERFACE)
            device.set_configuration()
            usb.util.claim_interface(device, USB_INTERFACE)
        except usb.core.USBError as e:
            raise TransportError(
                f"Cannot claim USB {profile.name} brick: {e}"
            ) from e

        self._device = device
        self._buffer.clear()
        logger.debug("USB %s opened", profile.name)

    def close(self) -> None:
        if self._device is None:
            return
        device, self._device = self._device, None
        self._buffer.clear()
        try:
            usb.util.release_interface(device, USB_INTERFACE)
            usb.util.dispose_resources(device)
        except usb.core.USBError as e:
            raise TransportError(f"Error releasing USB device: {e}") from e
        logger.debug("USB %s closed", self.profile.name)

    def write(self, data: bytes) -> None:
        if self._device is None:
            raise TransportError("USB device is not open")

        if self.profile.padded:
            size = self.profile.packet_size
            if len(data) > size:
                raise TransportError(
                    f"Message of {len(data)} bytes exceeds USB report size {size}"
                )
            data = bytes(data).ljust(size, b"\x00")

        try:
            self._device.write(self.profile.out_endpoint, data, self._timeout_ms)
        except usb.core.USBError as e:
            raise TransportError(f"USB write failed: {e}") from e

    def read(self, size: int) -> bytes:
        if self._device is None:
            raise TransportError("USB device is not open")

        while len(self._buffer) < size:
            try:
                packet = self._device.read(
                    self.profile.in_endpoint,
                    self.profile.packet_size,
                    self._timeout_ms,
                )
            except usb.core.USBTimeoutError:
                break
            except usb.core.USBError as e:
                raise TransportError(
                    f"USB read failed: {e}", bytes_read=len(self._buffer)
                ) from e
            if not packet:
                break
            self._buffer.extend(bytes(packet))

        chunk = bytes(self._buffer[:size])
        del self._buffer[:size]
        return chunk

    def end_of_message(self) -> None:
        """Drop report padding left over after a complete reply."""
        if self.profile.padded and self._buffer:
            logger.debug("Discarding %d bytes of report padding", len(self._buffer))
            self._buffer.clear()


def find_usb_brick(profile: UsbProfile) -> Optional[str]:
    """
    Describe the first attached brick matching profile.

    Returns:
        "bus:address" of the device, or None if none is attached.
    """
    try:
        device = usb.core.find(
            idVendor=profile.vendor_id, idProduct=profile.product_id
        )
    except usb.core.NoBackendError:
        logger.debug("No libusb backend, USB scan skipped")
        return None
    if device is None:
        return None
    return f"{device.bus}:{device.address}"
