"""Host monitoring agent: system/container metrics, remote control, duplex transport."""

__version__ = "1.0.0"
