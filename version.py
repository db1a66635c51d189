"""Project version constants.

These constants are used in logs, in the ``/api/version`` payload and embedded
in order snapshots so stored ``snapshot_data`` can be traced back to the code
that produced it.
"""

APP_NAME: str = "ezbox"
APP_VERSION: str = "0.1.0"

SNAPSHOT_VERSION: int = 1
