"""Wire protocol constants for the Joy-Con IR camera.

Two wire formats live here: the HID report layout spoken with the Joy-Con
(report ids, subcommands, fixed byte offsets) and the frame header used to
publish finished images over ZMQ PUSH/PULL.
"""

import struct

# ----------------------------------------------------------------------
# Device
# ----------------------------------------------------------------------

VENDOR_ID = 0x057E
PRODUCT_ID = 0x2007  # Joy-Con (R), the one carrying the IR camera

# ----------------------------------------------------------------------
# HID reports
# ----------------------------------------------------------------------

REPORT_SUBCOMMAND = 0x01  # rumble + subcommand
REPORT_MCU = 0x11  # rumble + MCU request, no subcommand wrapper
REPORT_SUBCOMMAND_REPLY = 0x21
REPORT_STREAMING = 0x31  # standard input + MCU data

PACKET_SIZE = 48
REPLY_SIZE = 0x170
SHORT_REPLY_SIZE = 49

# Subcommands (packet[9] on report 0x01)
SUB_DEVICE_INFO = 0x02
SUB_INPUT_MODE = 0x03
SUB_SPI_READ = 0x10
SUB_MCU_CONFIG = 0x21
SUB_MCU_STATE = 0x22
SUB_PLAYER_LED = 0x30
SUB_HOME_LED = 0x38
SUB_IMU_ENABLE = 0x40
SUB_IMU_READ = 0x43
SUB_VIBRATION = 0x48
SUB_VOLTAGE = 0x50

# Input report modes (argument of SUB_INPUT_MODE)
INPUT_MODE_STANDARD = 0x3F
INPUT_MODE_MCU = 0x31

# MCU commands
MCU_STATUS_REQUEST = 0x01
MCU_SET_MODE = 0x21
MCU_WRITE = 0x23
MCU_WRITE_IR_MODE = 0x01
MCU_WRITE_REGISTERS = 0x04
MCU_MODE_STANDBY = 0x01
MCU_MODE_IR = 0x05
IR_MODE_IMAGE_TRANSFER = 0x07
IR_FIRMWARE_MAJOR = 0x0005
IR_FIRMWARE_MINOR = 0x0018
MAX_REGISTERS_PER_WRITE = 9

# Streaming report types (reply[49])
STREAM_MCU_STATUS = 0x01
STREAM_FRAGMENT = 0x03
STREAM_IR_STATUS = 0x13

# Subcommand acknowledgements (reply[13], reply[14])
ACK_OK = 0x80
ACK_SPI_READ = 0x90
ACK_DEVICE_INFO = 0x82
ACK_IMU_READ = 0xC0
ACK_VOLTAGE = 0xD0

# MCU replies carried in report 0x21 (reply[15])
MCU_REPLY_STATE = 0x01
MCU_REPLY_IR_MODE = 0x0B
MCU_REPLY_REGISTERS = 0x13

# SPI flash addresses
SPI_SERIAL_NUMBER = 0x6001
SPI_SERIAL_NUMBER_LENGTH = 15
SPI_COLORS = 0x6050
SPI_COLORS_LENGTH = 12

# ----------------------------------------------------------------------
# Fragments and timing
# ----------------------------------------------------------------------

FRAGMENT_SIZE = 300
FRAME_BUFFER_SIZE = 19 * 4096
WHITE_PIXEL_SCALE = (217 + 1) * FRAGMENT_SIZE

POLL_TIMEOUT_MS = 64
STREAM_TIMEOUT_MS = 200
INPUT_MODE_SETTLE = 0.05
IMU_SETTLE = 0.064

DEFAULT_RESOLUTION = 240
DEFAULT_EXPOSURE_US = 300
MAX_EXPOSURE_US = 600
EXPOSURE_TICKS_PER_MS = 31200
DEFAULT_WARMUP_FRAMES = 2

# ----------------------------------------------------------------------
# ZMQ frame publishing
# ----------------------------------------------------------------------

HEADER_FORMAT = "<4sIQII"
HEADER_SIZE = struct.calcsize(HEADER_FORMAT)  # 24 bytes
HEADER_MAGIC = b"JCIR"

DEFAULT_ZMQ_ENDPOINT = "tcp://127.0.0.1:5565"
