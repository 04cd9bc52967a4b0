"""
NihongoPro Backup - versioned backups for NihongoPro learner data

Snapshot, catalog, restore and share a learner's progress.

Key Features:
    - Versioned backup archives with monotonically numbered versions
    - Catalog with last-backup bookkeeping and a backup reminder
    - Structural validation of every restored or imported backup
    - Import across devices with duplicate detection
    - Export to a directory or an HTTP share endpoint
"""

__version__ = "0.1.0"

from nihongopro_backup.config.settings import Settings, load_config

__all__ = [
    "__version__",
    "Settings",
    "load_config",
]
