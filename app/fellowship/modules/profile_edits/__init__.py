"""
Profile edit requests.

Members propose changes to their own profile; the regional head of their
region (or the Fellowship Manager) approves or rejects them. Approved
changes are applied to the member in the same transaction that resolves the
request.
"""
