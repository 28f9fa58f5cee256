"""auth/ -- Registration, login and session management for authgate.

Layer rule: auth/ imports stdlib, third-party libraries and core/.
It does NOT import from api/.
api/ imports from auth/, not the other way around.
"""
