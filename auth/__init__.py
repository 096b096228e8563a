"""auth/ -- Schoolbox SSO bridge: handshake, reconciliation, sessions, edge gate.

Layer rule: auth/ imports stdlib, third-party libraries, and core/.
It does NOT import from api/ or web/.
api/ and web/ import from auth/, not the other way around.
"""
