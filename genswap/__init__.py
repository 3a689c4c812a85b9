"""genswap: automated generation update orchestrator.

Fetches a new configuration revision, checks it against known issues, builds
it, remediates known build failures, then atomically activates the result or
rolls back to the previous generation.
"""

__version__ = "0.1.0"
