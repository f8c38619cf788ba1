"""
Member registry.

The Fellowship Manager registers members directly; each new member gets a
sequential fellowship number, a QR token for check-in and the
PENDING_FIRST_ATTENDANCE tag until their first check-in. Members are never
hard-deleted.
"""
