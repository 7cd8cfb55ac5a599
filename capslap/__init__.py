"""capslap - host-side bridge to the capslap core worker."""

__version__ = "0.1.0"
__logo__ = "🎬"
