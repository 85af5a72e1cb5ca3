"""DLRM dot-interaction kernel benchmark harness.

This package gates a problem configuration against an accelerator profile,
provisions and seeds the trial buffers, dispatches the forward or backward
interaction kernels (with the reduction barrier on the backward path), derives
throughput and efficiency, optionally validates against a host reference, and
reports one tabular row per trial.
"""

from __future__ import annotations
