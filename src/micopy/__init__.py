"""
Micopy - copy file trees with glob filters and a parallel worker pool.

This package scans one or more source directories, drops files matched by
named ignore-pattern sets, mirrors the remaining tree into destination
directories and reports progress while copying.
"""

__version__ = "0.1.0"
__author__ = "Micopy Team"
