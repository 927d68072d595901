"""AI categorization of ingested messages.

The categorizer wraps an opaque classification oracle and guarantees a valid
result per message, substituting a fallback whenever classification fails.
"""

from .categorizer import Categorizer, ClassificationOracle
from .domains import SenderDomainType, classify_sender_domain
from .parsing import interpret_response
from .prompt import ClassificationFeatures, build_classification_prompt

__all__ = [
    "Categorizer",
    "ClassificationFeatures",
    "ClassificationOracle",
    "SenderDomainType",
    "build_classification_prompt",
    "classify_sender_domain",
    "interpret_response",
]
