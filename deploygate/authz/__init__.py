"""Authorization layer: decides what a resolved capability set may touch.

Pure functions only (no I/O), so every decision is deterministic per request.
"""
