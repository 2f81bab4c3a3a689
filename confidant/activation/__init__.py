"""
Activation - Should the assistant speak up?

Key Components:
- ActivationDecider: Pure rule-based decision (never touches the ledger)
- LLMActivationSignalSource: Optional LLM judgment fed to the decider
"""

from .decider import (
    ActivationDecider,
    ActivationSignal,
    ActivationSignalSource,
    LLMActivationSignalSource,
    ACTIVATION_PROMPT,
)

__all__ = [
    "ActivationDecider",
    "ActivationSignal",
    "ActivationSignalSource",
    "LLMActivationSignalSource",
    "ACTIVATION_PROMPT",
]
