"""Activate HTTPS interception on Android devices and Electron apps."""

__version__ = "0.1.0"
