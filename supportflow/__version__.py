"""Version and build information for supportflow."""

import os

__version__ = "0.4.0"

# Stamped into the image by the release pipeline.
__build_date__ = os.getenv("SUPPORTFLOW_BUILD_DATE")
__commit_sha__ = os.getenv("SUPPORTFLOW_COMMIT_SHA")
