"""auth/ -- Authentication and access gating for MemberPortal.

Layer rule: auth/ imports only stdlib + third-party libraries.
It does NOT import from api/, web/, or core/.
api/ and web/ import from auth/, not the other way around.
"""
