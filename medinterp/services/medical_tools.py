"""
Medical tool set exposed to the interpreter service.

Tools:
- scheduleFollowupAppointment: forward a follow-up request to the webhook
- sendLabOrder: forward a lab order to the webhook
- generateConversationSummary: build/save the conversation summary
- endSession: save the conversation and notify the host

Appointment and lab order actions are recorded by the protocol handler
before the handler runs, so a failed webhook still leaves the action in the
session's action list.
"""

from __future__ import annotations

import asyncio
import inspect
from typing import Any, Callable, Dict, List, Optional

from medinterp.config import SessionConfig, settings
from medinterp.db import ConversationRepository
from medinterp.logger import get_logger
from medinterp.realtime.protocol import SUMMARY_TOOL
from medinterp.realtime.session_controller import SessionController, build_basic_summary
from medinterp.realtime.tools import FunctionResult, ToolDescriptor, ToolParameter
from medinterp.services.webhook import WebhookClient

logger = get_logger(__name__)

SCHEDULE_APPOINTMENT_TOOL = "scheduleFollowupAppointment"
LAB_ORDER_TOOL = "sendLabOrder"
END_SESSION_TOOL = "endSession"

LAB_URGENCY = ["routine", "urgent", "stat"]


MEDICAL_TOOLS: Dict[str, ToolDescriptor] = {
    SCHEDULE_APPOINTMENT_TOOL: ToolDescriptor(
        name=SCHEDULE_APPOINTMENT_TOOL,
        description="Schedule a follow-up appointment for the patient",
        properties={
            "patientName": ToolParameter("string", "Name of the patient"),
            "timeframe": ToolParameter("string", "When the follow-up should happen (e.g., '2 weeks', '3 months')"),
            "reason": ToolParameter("string", "Reason for the follow-up appointment"),
        },
        required=["patientName", "timeframe"],
    ),
    LAB_ORDER_TOOL: ToolDescriptor(
        name=LAB_ORDER_TOOL,
        description="Send a lab order for the patient",
        properties={
            "patientName": ToolParameter("string", "Name of the patient"),
            "testType": ToolParameter("string", "Type of lab test to order"),
            "urgency": ToolParameter("string", "Urgency of the lab order", enum=LAB_URGENCY),
        },
        required=["patientName", "testType"],
    ),
    SUMMARY_TOOL: ToolDescriptor(
        name=SUMMARY_TOOL,
        description=(
            "Generate a summary of the conversation and save it, including any "
            "detected actions like follow-up appointments or lab orders"
        ),
        properties={
            "includeActions": ToolParameter("boolean", "Whether to include detected actions in the summary"),
            "forceGenerate": ToolParameter("boolean", "Force generation of a new summary"),
        },
        required=[],
    ),
    END_SESSION_TOOL: ToolDescriptor(
        name=END_SESSION_TOOL,
        description="End the current conversation session when it has naturally concluded",
        properties={
            "reason": ToolParameter("string", "Reason for ending the session"),
            "autoGenerateSummary": ToolParameter("boolean", "Generate a summary before ending the session"),
        },
        required=["reason"],
    ),
}


class MedicalToolHandlers:
    """
    Handlers for the medical tool set, bound to one session controller.

    Usage:
        handlers = MedicalToolHandlers(controller, on_session_end=show_summary)
        handlers.register_all()
    """

    def __init__(
        self,
        controller: SessionController,
        repository: Optional[ConversationRepository] = None,
        webhook: Optional[WebhookClient] = None,
        on_session_end: Optional[Callable[[], Any]] = None,
        config: Optional[SessionConfig] = None,
    ) -> None:
        self.controller = controller
        self.repository = repository or ConversationRepository()
        self.webhook = webhook or WebhookClient()
        self.on_session_end = on_session_end
        self.config = config or settings.session
        self._pending: List[asyncio.Task] = []

    def register_all(self) -> None:
        """Register the four tools; summary and end are not logged as actions."""
        self.controller.register_tool(
            SCHEDULE_APPOINTMENT_TOOL, self.schedule_followup_appointment, MEDICAL_TOOLS[SCHEDULE_APPOINTMENT_TOOL]
        )
        self.controller.register_tool(LAB_ORDER_TOOL, self.send_lab_order, MEDICAL_TOOLS[LAB_ORDER_TOOL])
        self.controller.register_tool(
            SUMMARY_TOOL, self.generate_conversation_summary, MEDICAL_TOOLS[SUMMARY_TOOL], record_action=False
        )
        self.controller.register_tool(
            END_SESSION_TOOL, self.end_session, MEDICAL_TOOLS[END_SESSION_TOOL], record_action=False
        )
        self.controller.add_stop_hook(self.cancel_pending)

    # ------------------------------------------------------------------
    # Clinical actions
    # ------------------------------------------------------------------

    async def schedule_followup_appointment(self, args: Dict[str, Any]) -> FunctionResult:
        logger.info(f"Scheduling follow-up appointment: {args}")
        try:
            await self.webhook.send(SCHEDULE_APPOINTMENT_TOOL, args)
        except Exception as exc:  # pylint: disable=broad-except
            logger.error(f"Error scheduling appointment: {exc}")
            return FunctionResult.failure("Failed to schedule appointment", exc)
        return FunctionResult(success=True, message="Follow-up appointment scheduled successfully")

    async def send_lab_order(self, args: Dict[str, Any]) -> FunctionResult:
        logger.info(f"Sending lab order: {args}")
        try:
            await self.webhook.send(LAB_ORDER_TOOL, args)
        except Exception as exc:  # pylint: disable=broad-except
            logger.error(f"Error sending lab order: {exc}")
            return FunctionResult.failure("Failed to send lab order", exc)
        return FunctionResult(success=True, message="Lab order sent successfully")

    # ------------------------------------------------------------------
    # Summary and session end
    # ------------------------------------------------------------------

    async def _save(self, summary: str) -> str:
        return await asyncio.to_thread(
            self.repository.insert,
            self.controller.conversation,
            summary,
            self.controller.detected_actions,
        )

    async def generate_conversation_summary(self, args: Dict[str, Any]) -> FunctionResult:
        return await self._summarize(bool(args.get("forceGenerate", False)), notify=True)

    async def _summarize(self, force: bool, notify: bool) -> FunctionResult:
        try:
            summary = self.controller.summary
            if not summary.strip() or force:
                summary = build_basic_summary(self.controller.conversation, self.controller.detected_actions)
                self.controller.summary = summary

            conversation_id = await self._save(summary)
            logger.info(f"Conversation saved with summary: {conversation_id}")
            if notify:
                self._notify_session_end(0.0)
            return FunctionResult(
                success=True,
                message="Conversation summary generated and conversation saved",
                summary=summary,
            )
        except Exception as exc:  # pylint: disable=broad-except
            logger.error(f"Error generating summary: {exc}")
            if not self.controller.summary.strip():
                fallback = (
                    "Summary of conversation (generated after an error occurred):\n\n"
                    "Conversation between doctor and patient with "
                    f"{len(self.controller.detected_actions)} detected actions."
                )
                self.controller.summary = fallback
                return FunctionResult(
                    success=True,
                    message="Error generating detailed summary, basic summary created",
                    summary=fallback,
                )
            return FunctionResult.failure("Failed to save conversation summary", exc)

    async def end_session(self, args: Dict[str, Any]) -> FunctionResult:
        reason = args.get("reason") or "The conversation is complete"
        logger.info(f"Ending session: {reason}")
        try:
            if args.get("autoGenerateSummary"):
                result = await self._summarize(force=False, notify=False)
                if not result.success:
                    raise RuntimeError(result.error or result.message)
            else:
                await self._save(self.controller.summary)
        except Exception as exc:  # pylint: disable=broad-except
            logger.error(f"Error ending session: {exc}")
            return FunctionResult.failure("Failed to end session properly", exc)

        self._notify_session_end(self.config.end_session_delay_s)
        return FunctionResult(success=True, message="Session ended successfully")

    def _notify_session_end(self, delay_s: float) -> None:
        if self.on_session_end is None:
            return
        self._pending = [t for t in self._pending if not t.done()]
        self._pending.append(asyncio.create_task(self._fire_session_end(delay_s)))

    async def _fire_session_end(self, delay_s: float) -> None:
        try:
            await asyncio.sleep(delay_s)
            result = self.on_session_end()
            if inspect.isawaitable(result):
                await result
        except asyncio.CancelledError:
            pass
        except Exception as exc:  # pylint: disable=broad-except
            logger.error(f"Session end callback failed: {exc}")

    def cancel_pending(self) -> None:
        for task in self._pending:
            if not task.done() and task is not asyncio.current_task():
                task.cancel()
        self._pending.clear()


def register_medical_tools(
    controller: SessionController,
    repository: Optional[ConversationRepository] = None,
    webhook: Optional[WebhookClient] = None,
    on_session_end: Optional[Callable[[], Any]] = None,
) -> MedicalToolHandlers:
    """Build the handlers for a controller and register them."""
    handlers = MedicalToolHandlers(controller, repository, webhook, on_session_end)
    handlers.register_all()
    return handlers
