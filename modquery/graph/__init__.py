"""
Dependency graph snapshot: immutable model, document schema and loader.
"""
