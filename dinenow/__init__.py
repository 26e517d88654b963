"""
                DineNow Ordering Core

Order lifecycle and kitchen-load estimation engine for restaurant
table ordering (web storefront, Telegram mini-app, staff/kitchen views).

Version: 1.0.0
License: MIT
"""

__version__ = "1.0.0"
