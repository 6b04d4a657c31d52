"""
MPU6050 Raw Source
Polls accelerometer and gyroscope registers and publishes the latest values
"""

import logging
import math
import threading
import time
from typing import Optional, Tuple

import smbus2

from pothole_system.coordinator.clock import SessionClock
from pothole_system.sensors.source import RawSensorSource

from .config import MPU6050Config

logger = logging.getLogger(__name__)

# Register map
_PWR_MGMT_1 = 0x6B
_GYRO_CONFIG = 0x1B
_ACCEL_CONFIG = 0x1C
_ACCEL_XOUT_H = 0x3B  # 14-byte block: accel xyz, temperature, gyro xyz


class MPU6050Source(RawSensorSource):
    """
    MPU6050 source - raw accelerometer and gyroscope delivery

    Runs its own polling thread at config.poll_interval. Samples are
    converted to m/s² and rad/s and pushed into the latest-value cells;
    nothing is queued.

    A run of config.max_consecutive_errors failed reads ends polling:
    the stream then simply stops updating and the recorder reports it.
    """

    def __init__(self, config: Optional[MPU6050Config] = None, clock: Optional[SessionClock] = None):
        """
        Args:
            config: MPU6050 configuration
            clock: Clock used to stamp arrivals; share it with the recorder
        """
        super().__init__(clock)
        self.config = config if config else MPU6050Config()

        # I2C bus
        self.bus = None

        # State management
        self.is_running = False
        self.poll_thread = None
        self.stop_event = threading.Event()

        self.read_count = 0
        self.error_count = 0

        logger.info(f"MPU6050 source initialized (bus {self.config.i2c_bus}, "
                    f"address 0x{self.config.i2c_address:02X})")

    def start(self):
        """
        Open the I2C bus, configure the sensor, and start the polling thread.

        Raises:
            OSError if the bus cannot be opened or the sensor does not respond.
        """
        if self.is_running:
            logger.warning("MPU6050 source already running")
            return

        try:
            logger.info("Initializing MPU6050 sensor...")
            self.bus = smbus2.SMBus(self.config.i2c_bus)

            # Wake up (clear sleep bit), then set ranges
            self.bus.write_byte_data(self.config.i2c_address, _PWR_MGMT_1, 0x00)
            time.sleep(0.1)
            self.bus.write_byte_data(self.config.i2c_address, _ACCEL_CONFIG, self.config.accel_range)
            self.bus.write_byte_data(self.config.i2c_address, _GYRO_CONFIG, self.config.gyro_range)

            logger.info(f"✓ MPU6050 ready at address 0x{self.config.i2c_address:02X}")

            self.is_running = True
            self.stop_event.clear()
            self.read_count = 0
            self.error_count = 0

            self.poll_thread = threading.Thread(
                target=self._poll_loop,
                name="MPU6050-Poll-Thread",
                daemon=True
            )
            self.poll_thread.start()
            logger.info(f"✓ MPU6050 polling started (~{self.config.poll_rate_hz:.0f} Hz)")

        except Exception as e:
            logger.error(f"✗ Failed to start MPU6050: {e}", exc_info=True)
            self.is_running = False
            if self.bus:
                self.bus.close()
                self.bus = None
            raise

    def stop(self):
        """Stop the polling thread and close the bus."""
        if not self.is_running:
            return

        self.stop_event.set()
        if self.poll_thread and self.poll_thread.is_alive() and self.poll_thread is not threading.current_thread():
            self.poll_thread.join(timeout=5)

        if self.bus:
            self.bus.close()
            self.bus = None

        self.is_running = False
        logger.info(f"✓ MPU6050 stopped ({self.read_count} reads, {self.error_count} errors)")

    def _poll_loop(self):
        consecutive_errors = 0

        while not self.stop_event.is_set():
            try:
                accel, gyro = self.read_sample()
                self.push_accel(*accel)
                self.push_gyro(*gyro)
                self.read_count += 1
                consecutive_errors = 0
                self.stop_event.wait(self.config.poll_interval)

            except OSError as e:
                self.error_count += 1
                consecutive_errors += 1
                if consecutive_errors >= self.config.max_consecutive_errors:
                    logger.error(f"✗ MPU6050 unreadable after {consecutive_errors} attempts, "
                                 f"giving up: {e}")
                    break
                logger.debug(f"MPU6050 read failed: {e}")
                self.stop_event.wait(0.1)

        logger.info("MPU6050 poll loop stopped")

    def read_sample(self) -> Tuple[Tuple[float, float, float], Tuple[float, float, float]]:
        """
        Read one accelerometer + gyroscope sample.

        Returns:
            ((ax, ay, az) in m/s², (gx, gy, gz) in rad/s)
        """
        block = self.bus.read_i2c_block_data(self.config.i2c_address, _ACCEL_XOUT_H, 14)
        words = [self._to_signed(block[i], block[i + 1]) for i in range(0, 14, 2)]

        scale = self.config.gravity / self.config.accel_sensitivity
        accel = (words[0] * scale, words[1] * scale, words[2] * scale)

        # words[3] is the die temperature
        gyro = tuple(math.radians(w / self.config.gyro_sensitivity) for w in words[4:7])
        return accel, gyro

    @staticmethod
    def _to_signed(high: int, low: int) -> int:
        """Combine two register bytes into a signed 16-bit value."""
        value = (high << 8) | low
        return value - 0x10000 if value >= 0x8000 else value

    def get_status(self) -> dict:
        status = super().get_status()
        status.update({
            'is_running': self.is_running,
            'reads': self.read_count,
            'errors': self.error_count,
        })
        return status

    def __repr__(self):
        status = "running" if self.is_running else "stopped"
        return f"<MPU6050Source(status={status})>"
