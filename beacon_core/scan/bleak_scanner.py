"""
BLE radio scanner backed by bleak.

bleak is asyncio based; the scan controller is thread based. The scanner
runs bleak on a private event loop thread and translates each advertisement
into a RawDetection handed to the window callback (which only enqueues).
"""

import asyncio
import logging
import threading
from typing import Optional

from bleak import BleakScanner

from .radio import DetectionCallback, RadioScanner, RadioUnavailableError, RawDetection

logger = logging.getLogger(__name__)


class BleakRadioScanner(RadioScanner):
    """
    Radio scanner using the host Bluetooth adapter through bleak.

    Usage:
        radio = BleakRadioScanner(scanning_mode="passive")
        radio.start_window(callback)
        ...
        radio.stop_window()
        radio.close()
    """

    def __init__(
        self,
        scanning_mode: str = "active",
        adapter: Optional[str] = None,
        command_timeout_s: float = 10.0,
    ):
        """
        Initialize BLE scanner.

        Args:
            scanning_mode: "active" or "passive"
            adapter: Adapter name (e.g., "hci0"), platform default if None
            command_timeout_s: Bound on start/stop calls to the adapter
        """
        if scanning_mode not in ("active", "passive"):
            raise ValueError(f"Unknown scanning mode: {scanning_mode}")

        self.scanning_mode = scanning_mode
        self.adapter = adapter
        self.command_timeout_s = command_timeout_s

        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._loop_thread: Optional[threading.Thread] = None
        self._scanner: Optional[BleakScanner] = None

    def _ensure_loop(self) -> asyncio.AbstractEventLoop:
        if self._loop is None:
            self._loop = asyncio.new_event_loop()
            self._loop_thread = threading.Thread(
                target=self._loop.run_forever,
                name="bleak-loop",
                daemon=True,
            )
            self._loop_thread.start()
        return self._loop

    def _call(self, coro):
        future = asyncio.run_coroutine_threadsafe(coro, self._ensure_loop())
        return future.result(timeout=self.command_timeout_s)

    def start_window(self, callback: DetectionCallback):
        if self._scanner is not None:
            raise RadioUnavailableError("Scan already started")

        def on_advertisement(device, advertisement_data):
            callback(RawDetection(
                address=device.address,
                rssi=advertisement_data.rssi,
                name=advertisement_data.local_name or device.name,
            ))

        async def _start():
            kwargs = {
                'detection_callback': on_advertisement,
                'scanning_mode': self.scanning_mode,
            }
            if self.adapter:
                kwargs['bluez'] = {'adapter': self.adapter}
            scanner = BleakScanner(**kwargs)
            await scanner.start()
            return scanner

        try:
            self._scanner = self._call(_start())
        except Exception as e:
            raise RadioUnavailableError(f"BLE scan could not start: {e}") from e

        logger.debug("BLE scan started")

    def stop_window(self):
        scanner, self._scanner = self._scanner, None
        if scanner is None:
            return

        try:
            self._call(scanner.stop())
        except Exception as e:
            logger.warning(f"BLE scan stop failed: {e}")
        else:
            logger.debug("BLE scan stopped")

    def close(self):
        """Stop scanning and shut down the event loop thread."""
        self.stop_window()
        if self._loop is None:
            return

        self._loop.call_soon_threadsafe(self._loop.stop)
        self._loop_thread.join(timeout=self.command_timeout_s)
        if self._loop_thread.is_alive():
            # A running loop cannot be closed; a later close() retries.
            logger.warning("BLE event loop did not stop in time; leaving it open")
            return
        self._loop.close()
        self._loop = None
        self._loop_thread = None
