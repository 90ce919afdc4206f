"""
Membership portal backend.

Keeps a community member role consistent with application review decisions
and billing subscription state.
"""
