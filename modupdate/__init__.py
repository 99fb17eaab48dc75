"""Find and install newer versions of locally installed Minecraft mods."""

__version__ = "0.1.0"
