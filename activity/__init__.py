"""activity/ -- Append-only per-subject activity journal for PageGate.

Layer rule: activity/ imports only stdlib, third-party libraries, and core/.
It does NOT import from api/, web/, or auth/.
"""
