"""
Entry point for running the backup tool as a module.

Usage:
    python -m nihongopro_backup [command] [options]
"""

from nihongopro_backup.cli import main

if __name__ == "__main__":
    main()
