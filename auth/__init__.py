"""auth/ -- Credential-and-session pipeline for Cryptify.

Layer rule: auth/ imports only stdlib, third-party libraries and core/.
It does NOT import from api/ or balances/.
api/ imports from auth/, not the other way around.
"""
