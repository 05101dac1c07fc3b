"""
Shared constants for the LIFX dual-transport controller.
"""

# Canonical ranges used everywhere above the transport boundary.
BRIGHTNESS_MAX = 100
SATURATION_MAX = 100
HUE_MAX = 360
KELVIN_MIN = 2500
KELVIN_MAX = 9000

# Fade applied when a control request carries no duration (milliseconds).
DEFAULT_DURATION_MS = 1000

# LAN discovery defaults (milliseconds unless noted)
DEFAULT_LAN_TIMEOUT_MS = 5000
DEFAULT_LAN_STATE_TIMEOUT_MS = 5000
DEFAULT_LAN_RETRY_ATTEMPTS = 3
DEFAULT_LAN_COOLDOWN_MS = 2000
LAN_BROADCAST_ADDRESS = "255.255.255.255"

# Upper bound for a single control round trip. Bulbs can silently drop a
# UDP request, so a command must fail instead of waiting forever.
DEFAULT_CONTROL_TIMEOUT_MS = 10000

# LIFX cloud API
HTTP_API_BASE = "https://api.lifx.com/v1"
HTTP_REQUEST_TIMEOUT = 10  # seconds
HTTP_TOKEN_ENV = "LIFX_API_TOKEN"

# Transport names, in priority order (first wins when merging discovery).
SOURCE_LAN = "lan"
SOURCE_HTTP = "http"
SOURCE_PRIORITY = (SOURCE_LAN, SOURCE_HTTP)

# errorType values reported in ConnectionState
ERROR_NO_LIGHTS = "no-lights"
ERROR_TIMEOUT = "timeout"
ERROR_CONNECTION_REFUSED = "connection-refused"
ERROR_NETWORK = "network-error"
ERROR_AUTH = "auth"
ERROR_UNKNOWN = "unknown"

CONFIG_DIR_NAME = ".lifxctl"
CONFIG_FILE_NAME = "config.json"
