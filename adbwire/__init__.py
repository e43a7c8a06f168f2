"""
adbwire - Host-side client for the Android Debug Bridge.

Talks to the local ADB server over its TCP protocol to:
- Report the server version
- List devices and emulators with their build properties
- Track device list changes as they happen
- Run shell commands and start/stop apps
and wraps the native adb executable for install, push, pull, forward and logcat.
"""

__version__ = "0.1.0"
__author__ = "adbwire Contributors"
