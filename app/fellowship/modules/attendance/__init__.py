"""
Events and check-in (members and walk-in guests).
"""
