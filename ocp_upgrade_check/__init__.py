# SPDX-License-Identifier: MIT

"""Pre- and post-upgrade health checks for OpenShift clusters.

All cluster access is read-only (list/get). A run evaluates an ordered set
of checks, reduces the results to a Pass/Warn/Fail verdict and writes an
append-only audit log plus an HTML report.
"""

__version__ = "1.0.0"
