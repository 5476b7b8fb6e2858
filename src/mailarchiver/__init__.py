"""
mailarchiver

Scans the inbox of every configured mail account and moves messages
older than a retention window into a year/month archive hierarchy
(or the equivalent label on Gmail-style accounts).
"""

__version__ = "1.0.0"
__app_name__ = "mailarchiver"
