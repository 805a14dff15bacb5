"""hashcal: a calendar whose whole state lives in a shareable link fragment."""

__version__ = "0.1.0"
