"""
Keyword auto-responder.

Replies to greetings, help requests and thanks with a fixed text. Anything
smarter belongs to an external collaborator implementing ``AutoResponder``.
"""

import re
from dataclasses import dataclass
from typing import TYPE_CHECKING

from leadrelay.core.shared.logger import LogContext, get_service_logger
from leadrelay.models.message import InboundMessage

if TYPE_CHECKING:
    from leadrelay.services.message_dispatcher import MessageDispatcher

logger = get_service_logger("auto_responder")


@dataclass(frozen=True)
class KeywordRule:
    """Reply sent when any keyword appears as a whole word in a text message."""

    name: str
    keywords: tuple[str, ...]
    reply: str

    def matches(self, text: str) -> bool:
        words = set(re.findall(r"[a-z']+", text.lower()))
        return any(keyword in words for keyword in self.keywords)


DEFAULT_RULES: tuple[KeywordRule, ...] = (
    KeywordRule(
        name="greeting",
        keywords=("hello", "hi", "hey"),
        reply="Hello! Thanks for reaching out. A member of our team will get back to you shortly.",
    ),
    KeywordRule(
        name="help",
        keywords=("help", "support"),
        reply="We're here to help. Please describe your question and our support team will reply soon.",
    ),
    KeywordRule(
        name="thanks",
        keywords=("thank", "thanks"),
        reply="You're welcome! Let us know if there's anything else we can do.",
    ),
)


class KeywordAutoResponder:
    """AutoResponder that answers text messages matching keyword rules."""

    def __init__(
        self,
        dispatcher: "MessageDispatcher",
        rules: tuple[KeywordRule, ...] = DEFAULT_RULES,
        enabled: bool = True,
    ):
        self.dispatcher = dispatcher
        self.rules = rules
        self.enabled = enabled

    def find_rule(self, message: InboundMessage) -> KeywordRule | None:
        text = message.text_body
        if not self.enabled or message.type != "text" or not text:
            return None
        for rule in self.rules:
            if rule.matches(text):
                return rule
        return None

    def matches(self, message: InboundMessage) -> bool:
        return self.find_rule(message) is not None

    async def respond(self, message: InboundMessage, context: LogContext) -> None:
        rule = self.find_rule(message)
        if rule is None:
            return

        # Runs while the webhook delivery waits for its acknowledgement
        result = await self.dispatcher.send_text(message.from_, rule.reply, reply_to_id=message.id, max_retries=0)
        log = logger.bind(context).with_context(rule=rule.name)
        if result.success:
            log.info("Auto-response sent", reply_message_id=result.message_id)
        else:
            log.warning("Auto-response not sent", error=result.error, error_kind=result.error_kind)
