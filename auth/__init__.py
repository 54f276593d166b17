"""auth/ -- Users, password credentials, sessions, and security policy for QueryBoard.

Layer rule: auth/ imports from core/ and db/ plus stdlib + third-party libraries.
It does NOT import from api/. auth/dependencies.py is the only module here that
imports fastapi; the entities raise auth.errors types and never see HTTP.
"""
