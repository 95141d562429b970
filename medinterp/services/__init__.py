"""
Services Package

Side effects triggered by tool calls:
- Medical tools: appointment, lab order, summary and session-end handlers
- Webhook: delivery of clinical actions
"""

from medinterp.services.webhook import WebhookClient, WebhookError
from medinterp.services.medical_tools import (
    MEDICAL_TOOLS,
    MedicalToolHandlers,
    register_medical_tools,
)

__all__ = [
    "WebhookClient",
    "WebhookError",
    "MEDICAL_TOOLS",
    "MedicalToolHandlers",
    "register_medical_tools",
]
