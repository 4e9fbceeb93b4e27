"""
ScanHub
=======
Malware file submission service: content-addressed storage, scan dispatch,
and a social layer of follows, likes and comments.
"""

__version__ = "0.1.0"
