"""
Gemini Automator

Batch prompt automation for the Gemini web app, with removal of the
fixed watermark from generated images.
"""

__version__ = "0.1.0"
