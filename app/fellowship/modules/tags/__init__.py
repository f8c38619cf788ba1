"""
Tags module.

- SYSTEM tags are created on demand by workflows (regional heads, first
  attendance, check-in volunteers); CUSTOM tags are managed by the manager
- Assignments are soft-deactivated, never deleted or reactivated in place
"""
