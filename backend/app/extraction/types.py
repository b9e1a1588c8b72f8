"""Typed extraction outputs independent of persistence."""

from dataclasses import dataclass, field


@dataclass(slots=True)
class OrderExtractionResult:
    """Structured order fields produced from one compiled session document."""

    data: dict[str, object] = field(default_factory=dict)
    model_name: str = "unknown"
    prompt_version: str = "unknown"
