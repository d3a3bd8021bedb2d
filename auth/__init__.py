"""auth/ -- Session lifecycle and admission control for PageGate.

Layer rule: auth/ imports only stdlib, third-party libraries, and core/.
It does NOT import from api/, web/, or activity/ at runtime.
api/ and web/ import from auth/, not the other way around.
"""
