"""
Storage layer for jevons.

Data models, the tab-separated event codec and the atomic report writers.
"""
