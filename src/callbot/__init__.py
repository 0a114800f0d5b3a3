"""Streaming conversation backend for voice-call bots."""
