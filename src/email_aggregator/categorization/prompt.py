"""LLM prompt contract for per-message categorization."""

from __future__ import annotations

from dataclasses import dataclass

from email_aggregator.categorization.domains import SenderDomainType, classify_sender_domain
from email_aggregator.models import Category, Message

# Snippets are previews already; this only guards against pathological input.
MAX_SNIPPET_CHARS = 1500

_ASSIGNABLE = [c.value for c in Category if c is not Category.UNCATEGORIZED]


@dataclass(frozen=True)
class ClassificationFeatures:
    """Everything the oracle sees about one message."""

    subject: str
    sender: str
    sender_email: str
    snippet: str
    sender_domain_type: SenderDomainType

    @classmethod
    def from_message(cls, message: Message) -> "ClassificationFeatures":
        return cls(
            subject=message.subject,
            sender=message.sender,
            sender_email=message.sender_email,
            snippet=message.snippet[:MAX_SNIPPET_CHARS],
            sender_domain_type=classify_sender_domain(message.sender_email),
        )


def build_classification_prompt(features: ClassificationFeatures) -> str:
    """Build the categorization prompt.

    Response contract: a single JSON object with ``category``, ``priority``,
    ``tags``, ``reasoning`` and ``confidence``.
    """

    return (
        "You are an intelligent email categorization system. Analyze this email using the "
        "following structured information:\n\n"
        "SENDER ANALYSIS\n"
        f"Domain Type: {features.sender_domain_type.value}\n"
        f"Sender: {features.sender or '(unknown)'} <{features.sender_email or 'unknown'}>\n\n"
        "EMAIL CONTENT\n"
        f"Subject: {features.subject or '(No subject)'}\n"
        f"Content: {features.snippet or '(No content)'}\n\n"
        "CATEGORIZATION GUIDELINES:\n"
        "1. Work (priority 4-5): client communications, project updates, meeting invites, "
        "deadlines, reports, team discussions.\n"
        "2. Personal (priority 3-4): family and friends, personal appointments, bills, "
        "important personal notifications.\n"
        "3. Newsletter (priority 2-3): subscribed content, industry updates, news digests, "
        "blog updates, educational content.\n"
        "4. Promotion (priority 1-2): marketing campaigns, sales, product promotions, "
        "discounts.\n"
        "5. Update (priority 2-5): system notifications, account security alerts, receipts, "
        "shipping and service updates.\n\n"
        "PRIORITY SCORING:\n"
        "5 (Urgent): immediate action required, time-sensitive\n"
        "4 (High): important but not immediate\n"
        "3 (Medium): regular importance\n"
        "2 (Low): informational, can be read later\n"
        "1 (Minimal): no action needed\n\n"
        "Respond with ONLY a valid JSON object with these fields:\n"
        f'- "category": one of {", ".join(_ASSIGNABLE)}\n'
        '- "priority": integer from 1 to 5\n'
        '- "tags": array of short topic tags\n'
        '- "reasoning": brief explanation\n'
        '- "confidence": number between 0 and 1\n'
    )
