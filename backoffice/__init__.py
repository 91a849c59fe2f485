"""
                Restaurant Back-Office

Order and delivery lifecycle coordination with real-time
kitchen, delivery and manager notifications.

Version: 1.0.0
License: MIT
"""

__version__ = "1.0.0"
