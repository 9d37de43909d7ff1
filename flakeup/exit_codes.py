"""Process exit codes for the flakeup CLI.

Calling scripts branch on these, so they are stable.
"""

SUCCESS: int = 0
USER_ERROR: int = 1
MANIFEST_ERROR: int = 2
HASH_RESOLUTION_FAILED: int = 3
BUILD_TIMEOUT: int = 4
VERIFICATION_FAILED: int = 5
INTERNAL_ERROR: int = 70
