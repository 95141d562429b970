"""
Medical Interpreter - Source Package

Realtime voice interpreter between an English-speaking clinician and a
Spanish-speaking patient, backed by a remote speech-to-speech service.

This package provides:
- Session transport over WebRTC with a JSON side-channel
- Streaming conversation reconciliation and language tagging
- Tool calls for follow-up appointments, lab orders and summaries
- Conversation persistence and a CLI
"""

__version__ = "1.0.0"

from medinterp.config import settings

__all__ = ["settings", "__version__"]
