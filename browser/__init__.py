"""
Browser Automation Module - Playwright driver for the maps scraper.

Usage:
    from browser import BrowserDriver, launch_driver
"""

from .driver import BrowserDriver, launch_driver

__all__ = [
    "BrowserDriver",
    "launch_driver",
]
