"""
Scopes and digital keys.

- Scope: access partition over content (one global square, grade 1-6, sections "g-A".."g-E").
- DigitalKey: persistent grant created when a member unlocks a scope with its access code.
- has_access() is the single resolver consulted before scoped reads/writes.
"""
