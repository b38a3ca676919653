"""voicememo - voice-activity-gated memo capture and classification."""

__version__ = "0.1.0"
