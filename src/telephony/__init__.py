"""Telephony media handling for relayed calls.

G.711 companding, resampling, frame pacing and the provider media-stream
message format. Everything here works on one call's audio and holds no
network state.
"""
