"""
Centralized path configuration for the sync service
Ensures all modules use the same data directory
"""

import os

# The /app/data directory is mounted as a volume in containers
DATA_DIR = os.getenv('GITSYNC_DATA_DIR', '/app/data')

# For development/testing outside a container
if not os.getenv('GITSYNC_DATA_DIR') and not os.path.exists('/app'):
    # Running locally, use relative paths
    DATA_DIR = './data'

# Database path - MUST be in the data directory for persistence
DATABASE_PATH = os.path.join(DATA_DIR, 'gitsync.db')

LOG_DIR = os.path.join(DATA_DIR, 'logs')


def ensure_data_dirs():
    """Create data directories if they don't exist"""
    for directory in [DATA_DIR, LOG_DIR]:
        os.makedirs(directory, exist_ok=True)
        try:
            os.chmod(directory, 0o700)
        except OSError:
            pass  # May not have permission in some environments
