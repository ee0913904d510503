"""
Index Linker
Detects Index / Table of Contents entries on PDF pages with a vision model
and writes clickable GoTo link annotations over them.
"""

__version__ = "1.0.0"
