"""Coach Context: training-history aggregation for AI coaching prompts."""

from .assembler import build_training_context, load_training_context
from .models import TrainingContext
from .prompt import render_context
from .rate_gate import GateStatus, RateGate

__all__ = [
    "GateStatus",
    "RateGate",
    "TrainingContext",
    "build_training_context",
    "load_training_context",
    "render_context",
]
