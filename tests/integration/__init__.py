"""
Integration Tests Package

End-to-end tests through the engine facade.

TEST AXIOMS:
=============
1. Determinism: same calls + same clock ticks = identical state
2. Atomicity: a rejected call changes nothing
3. Explicit failure: no silent fallbacks
"""
