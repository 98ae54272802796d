"""
edgecache - resilient caching and request coalescing for stateless isolates.
"""

__version__ = "0.1.0"
