"""
Centralized path configuration for Compoza
Keeps log output on the volume-mounted data directory
"""

import os

# The /app/data directory is mounted as a volume in Docker
DATA_DIR = os.getenv('COMPOZA_DATA_DIR', '/app/data')

LOG_DIR = os.path.join(DATA_DIR, 'logs')


def ensure_data_dirs():
    """Create data directories if they don't exist"""
    for directory in [DATA_DIR, LOG_DIR]:
        os.makedirs(directory, exist_ok=True)
        try:
            os.chmod(directory, 0o700)
        except OSError:
            pass  # May not have permission in some environments


# For development/testing outside Docker
if not os.path.exists('/app') and 'COMPOZA_DATA_DIR' not in os.environ:
    DATA_DIR = './data'
    LOG_DIR = os.path.join(DATA_DIR, 'logs')
