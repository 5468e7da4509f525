"""
OPD queue: the live outpatient waiting list.

Models, the queue services that mutate it and announce each change, the
pure reconcile engine that merges snapshots with pushed changes, and
the REST/WebSocket surfaces the dashboard reads from.
"""
