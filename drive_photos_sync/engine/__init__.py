"""
Resumable synchronization engine.
"""
