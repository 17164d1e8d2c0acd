"""
Ephemeral cluster load-testing pipeline.

Provisions a multi-node kind cluster, validates its health, deploys an
ingress with two echo backends and runs a k6 load test Job against them,
reporting pass/fail metrics extracted from the Job's output.
"""

__version__ = "0.1.0"
