"""
Background job queue: store, handler registry and worker.
"""
