"""Minecraft LAN lobby over an EasyTier virtual network, with room codes and a local web interface."""

__version__ = "0.2.0"