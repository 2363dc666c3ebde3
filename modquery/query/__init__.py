"""
Reference resolution and graph queries.

- args: module/extension reference grammar and resolution
- filter: extension inclusion predicates
- executor: tree, path, all_paths, show_extension and show algorithms
- command: argument resolution and dispatch for one query
"""
