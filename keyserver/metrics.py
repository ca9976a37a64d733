from prometheus_client import Counter, Histogram, Gauge

# Gauge for the last rotation cycle result (0=error, 0.5=warning, 1=noop or success)
keyserver_result = Gauge(
    'keyserver_result',
    'Keyserver run result (0 = error, 0.5 = warning, 1 = noop or success)'
)

# Histogram for full rotation cycle duration (seconds)
keyserver_cycle_duration_seconds = Histogram(
    'keyserver_cycle_duration_seconds',
    'Duration of rotation cycles in seconds',
    buckets=(1, 5, 15, 30, 60, 120, 300, 600, 1800)
)

# Counter for device interactions
# operation: connect, ntp_check, keychain_status, probe, apply, rollback
# status: success, benign_quirk, error
keyserver_device_operations_total = Counter(
    'keyserver_device_operations_total',
    'Total device operations performed by the keyserver',
    ['operation', 'status']
)

# Counter for rotation attempts, status: applied, rolled_back, rollback_failed
keyserver_rotations_total = Counter(
    'keyserver_rotations_total',
    'Total fleet-wide key rotations attempted',
    ['status']
)

__all__ = [
    'keyserver_result',
    'keyserver_cycle_duration_seconds',
    'keyserver_device_operations_total',
    'keyserver_rotations_total',
]
