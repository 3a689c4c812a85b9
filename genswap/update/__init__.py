"""Update orchestration: the control loop that moves a target to a new generation.

This package provides:
- IssueDetector: known-issue risk verdict for a revision (fails open)
- RemediationEngine: bounded, ordered fixes for classified build failures
- UpdateOrchestrator: the state machine with the rollback guarantee
- Reporter: one human-readable report per finished session
"""
