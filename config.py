"""
Beacon scanner configuration
"""

# Scanning device
DEVICE_CONFIG = {
    "device_id": "RC_CAR_001",        # Static id of this scanning unit
}

# Scan duty cycle
SCAN_CONFIG = {
    "window_duration_s": 6.0,         # Length of each scan window
    "interval_between_windows_s": 0.0,  # 0 = back-to-back windows
    "radio_retry_interval_s": 10.0,   # Retry a failed scan start (None = stay idle)
    "anchors_only": False,            # Only report registered anchors
    "scanning_mode": "active",        # BLE scanning mode: active / passive
    "adapter": None,                  # BLE adapter (e.g. "hci0"), None = default
}

# Collector uplink
UPLINK_CONFIG = {
    "base_url": None,                 # Collector URL, None = offline (in-memory)
    "endpoint": "location/rssi",      # RSSI endpoint path
    "timeout_s": 5.0,                 # Per-request timeout
    "max_attempts": 5,                # Delivery attempts per observation
    "abandon_on_client_error": True,  # 4xx responses are not retried
    "max_queue_size": None,           # None = unbounded, else drop oldest
    "shutdown_grace_s": 5.0,          # Time allowed to drain on stop
}

# Retry backoff
BACKOFF_CONFIG = {
    "base_delay_s": 0.5,
    "multiplier": 2.0,
    "max_delay_s": 30.0,
    "jitter_ratio": 0.2,
}

# Anchors (name -> hardware address, position in meters)
ANCHOR_CONFIG = {
    "Anchor1": {"address": "F0:00:00:00:00:01", "x": 0.0, "y": 0.0},
    "Anchor2": {"address": "F0:00:00:00:00:02", "x": 10.0, "y": 0.0},
    "Anchor3": {"address": "F0:00:00:00:00:03", "x": 5.0, "y": 8.66},
}

# Output
OUTPUT_CONFIG = {
    "print_status": True,             # Print status lines to the console
    "print_summary": True,            # Print metrics summary on exit
}

# Logging
LOGGING_CONFIG = {
    "level": "INFO",
    "format": "%(asctime)s - %(name)s - %(levelname)s - %(message)s",
}

# Simulated radio (offline runs)
SIMULATION_CONFIG = {
    "emit_interval_s": 0.5,
    "rssi_mean_dbm": -65.0,
    "rssi_std_dbm": 8.0,
}
