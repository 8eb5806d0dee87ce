"""Status-transition and synchronization engine for the task board.

This package holds the board model, the permission gate, column projection,
the transition validator, the session task store, the optimistic mutator and
the sync poller.  ``BoardSession`` wires them together for one user.
"""
