"""db/ -- Embedded SQLite storage: connection, schema scripts, schema control.

Layer rule: db/ imports only core/ + stdlib + third-party libraries.
It does NOT import from auth/ or api/.
"""
