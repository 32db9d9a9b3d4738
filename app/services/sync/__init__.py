"""
Strava Club Sync Service

Keeps linked clubs and their Strava-sourced events in line with Strava.

Key components:
- Adapters: Read-only Strava API client and typed payloads
- Reconciler: Pure merge planning that respects admin overrides
- Orchestrator: Runs one sync and owns its transaction boundaries
- Link controller: Link, unlink and preview lifecycle
"""
