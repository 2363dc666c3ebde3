"""
modquery - query engine for a resolved module dependency graph.

Answers "what depends on what", "why does X depend on Y" and "what does
extension E generate for module M" over an immutable graph snapshot.
"""

__version__ = "0.1.0"
