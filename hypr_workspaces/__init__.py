"""Hyprland workspace mirror for status bars."""

__version__ = "0.1.0"
