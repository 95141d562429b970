"""Message lookup for session status labels and service prompts.

Status labels are what the host shows while a session starts or fails;
prompts are the fixed texts sent to the remote service.
"""

from __future__ import annotations

_MESSAGES: dict[str, str] = {
    "status.idle": "",
    "status.requesting_microphone": "Requesting microphone access...",
    "status.fetching_token": "Fetching ephemeral token...",
    "status.establishing": "Establishing connection...",
    "status.established": "Session established successfully!",
    "status.stopping": "Stopping session...",
    "status.stopped": "Session stopped",
    "status.error": "Error: {detail}",
    "status.channel_not_ready": "Data channel not ready",
    "turn.processing": "Processing speech...",
    "repeat.request": 'Please repeat the following message in Spanish: "{text}"',
    "summary.request": (
        "Please generate a summary of this conversation and use the "
        "generateConversationSummary tool to save it, including all detected actions."
    ),
}

# Response-language prompts sent once when the side-channel opens.
_LANGUAGE_PROMPTS: dict[str, str] = {
    "english": (
        "Speak and respond only in English. It is crucial that you maintain your "
        "responses in English. If the user speaks in other languages, you should "
        "still respond in English."
    ),
    "spanish": (
        "Habla y responde solo en español. Es crucial que mantengas tus respuestas "
        "en español. Si el usuario habla en otros idiomas, deberías responder en "
        "español. (Spanish only)"
    ),
}


def msg(key: str, **kwargs: object) -> str:
    """Return a message by key, or the key itself if not found."""
    template = _MESSAGES.get(key, key)
    if kwargs:
        return template.format(**kwargs)
    return template


def language_prompt(language: str) -> str:
    """Return the response-language prompt, defaulting to English."""
    return _LANGUAGE_PROMPTS.get(language.lower(), _LANGUAGE_PROMPTS["english"])


def supported_languages() -> tuple[str, ...]:
    return tuple(_LANGUAGE_PROMPTS)


# Session instructions attached when minting a realtime credential.
INTERPRETER_INSTRUCTIONS = """
You are a medical interpreter facilitating communication between a clinician (English-speaking) and a patient (Spanish-speaking).

- When a message is received in English, translate it to Spanish and speak it out for the patient.
- When a message is received in Spanish, translate it to English and speak it out for the clinician.
- If you detect the Spanish phrase "repite eso" or "repeat that" or similar, repeat the previous clinician's message in Spanish.
- Be precise and accurate with medical terminology in both languages.

- USE THE AVAILABLE TOOLS WHEN APPROPRIATE:
  * When a doctor mentions scheduling a follow-up appointment, call the scheduleFollowupAppointment tool with patient name and timeframe.
  * When a doctor orders lab tests, call the sendLabOrder tool with patient name and test type.
  * When the conversation is ending or someone asks for a summary, call the generateConversationSummary tool to save all information.
  * When either party indicates they are done, call the endSession tool with reason="conversation complete" and autoGenerateSummary=true.

- After executing a tool, always inform the clinician what action was taken, in English.
- At the end of the conversation provide a summary of the key points discussed.
- Always maintain a professional, compassionate tone appropriate for a medical setting.
- NEVER speak directly to the patient, you're only a translator.
""".strip()
