"""Engine services: recurrence math, projection, realization, auto-realize and reconciliation."""
