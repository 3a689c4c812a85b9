"""Adapters for the external collaborators of the update orchestrator.

- Configuration sources: supply new desired-state revisions
- Builders: compile a revision into a deployable artifact
- Issue registries: report known defects per component
- Notification channels: deliver human-readable session reports
- Health checks: validate a generation after activation
"""
