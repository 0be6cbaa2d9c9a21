"""
notchaudio — "what is playing right now" for a notch overlay.

The core does NOT play anything.  It watches the machine and reports which
track is playing, from which app, with artwork and play state, and routes
transport and volume commands back to whoever owns playback.

Sources, in priority order:
  native        — the system now-playing record (media-control helper)
  probes/       — scripted fallbacks: Music, Spotify, then browser tabs

aggregator.py merges them into one published snapshot, dispatcher.py sends
commands back, and service.py exposes both to the UI over HTTP + WebSocket.
"""

__version__ = "0.1.0"
