"""Routes inbound chat messages to the queue, the service gate and operator commands."""
from dataclasses import dataclass
from typing import Dict, Any, Iterable, List, Optional

from handoff import settings
from handoff.gate import ServiceGate
from handoff.logging_conf import logger
from handoff.notifier import Notifier
from handoff.operators import OperatorDirectory, OperatorRemoval
from handoff.queue.manager import QueueManager
from handoff.queue.models import normalize_operator_name

GENERIC_ERROR = "Sorry, something went wrong on our side. Please try again later."

HELP_TEXT = "\n".join([
    "Commands:",
    "/on - go online (queue must be empty)",
    "/off - go offline and start queueing contacts",
    "/status - service state and queue",
    "/next - take the oldest contact off the queue",
    "/take <operator> - assign the oldest waiting contact to an operator",
    "/remove <user> - remove a contact from the queue",
    "/addop <name>, /delop <name>, /ops - manage operators",
])


@dataclass(frozen=True)
class InboundMessage:
    """A chat message as delivered by the gateway."""

    sender_id: str
    chat_id: str
    body: str
    from_me: bool = False
    recipient_id: Optional[str] = None
    message_id: Optional[str] = None

    @classmethod
    def from_payload(cls, payload: Dict[str, Any]) -> "InboundMessage":
        """Factory method for a gateway update payload."""
        sender = payload.get("from") or ""
        return cls(
            sender_id=sender,
            chat_id=payload.get("chat_id") or sender,
            body=(payload.get("body") or "").strip(),
            from_me=bool(payload.get("from_me")),
            recipient_id=payload.get("to"),
            message_id=payload.get("id"),
        )


class MessageHandler:
    """Decides what each inbound message means for the hand-off queue."""

    def __init__(self, queue: QueueManager, gate: ServiceGate, operators: OperatorDirectory,
                 notifier: Notifier, operator_ids: Optional[Iterable[str]] = None,
                 operator_chat_id: Optional[str] = None):
        self.queue = queue
        self.gate = gate
        self.operators = operators
        self.notifier = notifier
        self.operator_ids = set(settings.OPERATOR_IDS if operator_ids is None else operator_ids)
        self.operator_chat_id = operator_chat_id if operator_chat_id is not None else settings.OPERATOR_CHAT_ID
        self.commands = {
            "/on": self._cmd_on,
            "/off": self._cmd_off,
            "/status": self._cmd_status,
            "/next": self._cmd_next,
            "/take": self._cmd_take,
            "/remove": self._cmd_remove,
            "/addop": self._cmd_add_operator,
            "/delop": self._cmd_remove_operator,
            "/ops": self._cmd_list_operators,
            "/help": self._cmd_help,
        }

    def is_operator(self, message: InboundMessage) -> bool:
        return message.from_me or message.sender_id in self.operator_ids

    def handle(self, message: InboundMessage) -> None:
        if not message.body:
            return
        if message.from_me and self.notifier.is_own_message(message.message_id):
            logger.debug("Skipping echo of an outgoing notice", extra={"message_id": message.message_id})
            return
        if self.is_operator(message):
            self._handle_operator(message)
        else:
            self._handle_contact(message)

    # Contacts

    def _handle_contact(self, message: InboundMessage) -> None:
        user_id = message.sender_id
        try:
            # Any message from the contact counts as a reply to the operator.
            self.queue.clear_timer(user_id)

            if self.gate.is_online():
                logger.debug("Service online, message left for operators", extra={"user_id": user_id})
                return

            item = self.queue.get(user_id)
            if item is not None and item.is_assigned:
                return

            position = self.queue.enqueue(user_id, message.chat_id)
            self.notifier.send(
                message.chat_id,
                f"You are number {position} in the queue. Please wait for an operator to contact you.",
            )
        except Exception as e:
            logger.error(f"Failed to handle contact message: {e}", extra={"user_id": user_id}, exc_info=True)
            self.notifier.send(message.chat_id, GENERIC_ERROR)

    # Operators

    def _reply_to(self, message: InboundMessage) -> str:
        return message.chat_id if message.from_me else message.sender_id

    def _reply(self, message: InboundMessage, text: str) -> None:
        self.notifier.send(self._reply_to(message), text)

    def _handle_operator(self, message: InboundMessage) -> None:
        if not message.body.startswith("/"):
            self._operator_spoke(message)
            return

        parts = message.body.split()
        command, args = parts[0].lower(), parts[1:]
        action = self.commands.get(command)
        if action is None:
            self._reply(message, "Unknown command. Send /help for the list.")
            return

        try:
            action(message, args)
        except Exception as e:
            logger.error(f"Operator command {command} failed: {e}", exc_info=True)
            self._reply(message, GENERIC_ERROR)

    def _operator_spoke(self, message: InboundMessage) -> None:
        """An operator wrote to a contact: their response window (re)starts."""
        target = message.recipient_id or (message.chat_id if message.from_me else None)
        if not target or target in self.operator_ids or target == self.operator_chat_id:
            return
        self.queue.start_or_reset_timer(target)

    def _cmd_on(self, message: InboundMessage, args: List[str]) -> None:
        if self.gate.is_online():
            self._reply(message, "Service is already ON.")
            return
        if not self.queue.is_empty():
            self._reply(message, f"Cannot go ON: {self.queue.size()} contact(s) still in queue.")
            return
        self.gate.set_status(True)
        logger.info("Operator set service ON", extra={"operator_id": message.sender_id})
        self._reply(message, "Operator service: ON.")

    def _cmd_off(self, message: InboundMessage, args: List[str]) -> None:
        if not self.gate.set_status(False):
            self._reply(message, "Service is already OFF.")
            return
        logger.info("Operator set service OFF", extra={"operator_id": message.sender_id})
        self._reply(message, "Operator service: OFF.")

    def _cmd_status(self, message: InboundMessage, args: List[str]) -> None:
        online = self.gate.is_online()
        items = self.queue.list_items()
        lines = [f"Status: {'ON' if online else 'OFF'}", f"Queue: {len(items)}", ""]
        if items:
            lines.append("List:")
            for position, item in enumerate(items, start=1):
                assigned = f" -> {item.assigned_operator}" if item.is_assigned else ""
                lines.append(f"{position}. {item.user_id} ({item.created_at:%H:%M:%S}){assigned}")
        else:
            lines.append("Queue is empty.")
        self._reply(message, "\n".join(lines))

    def _cmd_next(self, message: InboundMessage, args: List[str]) -> None:
        if self.gate.is_online():
            self._reply(message, "Service is ON. Use /off first.")
            return

        item = self.queue.dequeue_oldest()
        if item is None:
            self._reply(message, "Queue is empty. Tip: /on to go online.")
            return

        logger.info("Operator took next contact", extra={"user_id": item.user_id})
        self._reply(message, f"Next in queue: {item.user_id}")
        self.notifier.dispatch(item.chat_id, "Hello! It's your turn. Please wait for an operator to contact you.")

        remaining = self.queue.list_items()
        if not remaining:
            self._reply(message, "Queue is now empty.")
            return
        for position, waiting in enumerate(remaining, start=1):
            self.notifier.dispatch(
                waiting.chat_id,
                f"You are now number {position} in the queue. Please wait for an operator to contact you.",
            )
        self._reply(message, f"Remaining in queue: {len(remaining)}. Position updates sent.")

    def _cmd_take(self, message: InboundMessage, args: List[str]) -> None:
        if not args:
            self._reply(message, "Usage: /take <operator>")
            return
        operator = self.operators.find(args[0])
        if operator is None:
            self._reply(message, f"Unknown operator: {args[0]}")
            return

        item = self.queue.assign_next(operator.name)
        if item is None:
            self._reply(message, "No waiting contacts.")
            return
        self._reply(message, f"{item.user_id} assigned to {operator.name}.")
        self.notifier.dispatch(item.chat_id, f"Operator {operator.name} will assist you shortly.")

    def _cmd_remove(self, message: InboundMessage, args: List[str]) -> None:
        if not args:
            self._reply(message, "Usage: /remove <user>")
            return
        user_id = args[0]
        item = self.queue.get(user_id)
        if not self.queue.remove(user_id):
            self._reply(message, f"{user_id} is not in the queue.")
            return
        self._reply(message, f"{user_id} removed from the queue.")
        if item is not None:
            self.notifier.dispatch(item.chat_id, "You have been removed from the queue by an operator.")

    def _cmd_add_operator(self, message: InboundMessage, args: List[str]) -> None:
        if not args:
            self._reply(message, "Usage: /addop <name>")
            return
        operator = self.operators.add(args[0])
        if operator is None:
            self._reply(message, "Invalid operator name.")
            return
        self._reply(message, f"Operator {operator.name} is registered.")

    def _cmd_remove_operator(self, message: InboundMessage, args: List[str]) -> None:
        if not args:
            self._reply(message, "Usage: /delop <name>")
            return
        name = normalize_operator_name(args[0])
        outcome = self.operators.remove(name)
        replies = {
            OperatorRemoval.REMOVED: f"Operator {name} removed.",
            OperatorRemoval.NOT_FOUND: f"Operator {name} not found.",
            OperatorRemoval.BUSY: f"Operator {name} still has assigned contacts.",
            OperatorRemoval.INVALID: "Invalid operator name.",
        }
        self._reply(message, replies[outcome])

    def _cmd_list_operators(self, message: InboundMessage, args: List[str]) -> None:
        names = self.operators.list_names()
        self._reply(message, "Operators:\n" + "\n".join(names) if names else "No operators registered.")

    def _cmd_help(self, message: InboundMessage, args: List[str]) -> None:
        self._reply(message, HELP_TEXT)
