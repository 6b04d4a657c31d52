"""
MPU6050 Sensor Configuration
I2C and register conversion parameters
"""

from dataclasses import dataclass


@dataclass
class MPU6050Config:
    """MPU6050 hardware configuration parameters"""

    # Hardware settings
    i2c_bus: int = 1
    i2c_address: int = 0x68

    # Polling settings - the sensor is polled faster than the 100 Hz frame
    # rate so every tick sees a fresh sample
    poll_interval: float = 0.005  # seconds

    # Accelerometer settings
    accel_range: int = 0x00  # ±2g range (register value)
    accel_sensitivity: float = 16384.0  # LSB/g for ±2g range
    gravity: float = 9.81  # m/s² conversion factor

    # Gyroscope settings
    gyro_range: int = 0x00  # ±250°/s range (register value)
    gyro_sensitivity: float = 131.0  # LSB/(°/s) for ±250°/s range

    # Error handling
    max_consecutive_errors: int = 50  # Give up on the bus after this many failed reads

    @property
    def poll_rate_hz(self) -> float:
        return 1.0 / self.poll_interval
