"""
RACV Quote Agent

Gets RACV car insurance quotes by driving the RACV quote wizard in a
headless browser.
"""

__version__ = "1.0.0"
