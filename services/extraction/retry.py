# services/extraction/retry.py
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

from services.extraction.domain import ExtractionData
from services.extraction.prompts import EXTRACTION_PROMPT, SYSTEM_PROMPT, build_correction_prompt
from services.extraction.vision_client import parse_extraction_json
from services.validation.extraction_validator import ExtractionValidator, ValidationResult, is_acceptable

logger = logging.getLogger(__name__)

DEFAULT_MAX_RETRIES = 2


class RetryState(str, Enum):
    ATTEMPTING = "attempting"
    VALIDATING = "validating"
    ACCEPTED = "accepted"
    RETRYING = "retrying"
    EXHAUSTED = "exhausted"


@dataclass
class ExtractionAttempt:
    index: int                    # 1-based
    prompt_variant: str           # "base" | "correction"
    raw_response: Optional[str] = None
    error: Optional[str] = None
    confidence: Optional[float] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "index": self.index,
            "prompt_variant": self.prompt_variant,
            "raw_response": self.raw_response,
            "error": self.error,
            "confidence": self.confidence,
        }


@dataclass
class RetryOutcome:
    data: Optional[ExtractionData]
    validation: Optional[ValidationResult]
    attempts: List[ExtractionAttempt] = field(default_factory=list)
    transitions: List[RetryState] = field(default_factory=list)

    @property
    def attempt_count(self) -> int:
        return len(self.attempts)

    @property
    def final_state(self) -> RetryState:
        return self.transitions[-1] if self.transitions else RetryState.ATTEMPTING

    @property
    def accepted(self) -> bool:
        return self.final_state is RetryState.ACCEPTED


class RetryController:
    """
    Attempting -> Validating -> {Accepted, Retrying, Exhausted}.

    Attempts run strictly one after another: each correction prompt is built from the
    previous attempt's validation errors. When no attempt reaches the "fair" threshold the
    best-scoring parsed attempt is returned anyway; the confidence tells the caller that
    a human needs to review it.
    """

    def __init__(
        self,
        *,
        client: Any,
        validator: Optional[ExtractionValidator] = None,
        max_retries: int = DEFAULT_MAX_RETRIES,
    ) -> None:
        self.client = client
        self.validator = validator or ExtractionValidator()
        self.max_retries = max(0, int(max_retries))

    def run(self, image: bytes, mime_type: str) -> RetryOutcome:
        outcome = RetryOutcome(data=None, validation=None)
        best: Optional[tuple] = None
        correction: Optional[str] = None
        total = self.max_retries + 1

        for index in range(1, total + 1):
            variant = "correction" if correction else "base"
            attempt = ExtractionAttempt(index=index, prompt_variant=variant)
            outcome.attempts.append(attempt)
            outcome.transitions.append(RetryState.ATTEMPTING)
            logger.info("Extraction attempt %d/%d (%s prompt)", index, total, variant)

            try:
                attempt.raw_response = self.client.generate(
                    system_prompt=SYSTEM_PROMPT,
                    user_prompt=correction or EXTRACTION_PROMPT,
                    image=image,
                    mime_type=mime_type,
                )
                raw = parse_extraction_json(attempt.raw_response)
            except Exception as e:
                attempt.error = str(e) or type(e).__name__
                logger.warning("Extraction attempt %d failed: %s", index, e)
                if index < total:
                    outcome.transitions.append(RetryState.RETRYING)
                    continue
                break

            outcome.transitions.append(RetryState.VALIDATING)
            data, validation = self.validator.validate(raw)
            attempt.confidence = validation.confidence
            logger.info(
                "Attempt %d result: %.0f%% confidence (%s), %d errors, %d warnings",
                index, validation.confidence, validation.label, len(validation.errors), len(validation.warnings),
            )

            if best is None or validation.confidence > best[1].confidence:
                best = (data, validation)

            if is_acceptable(validation.confidence):
                outcome.data, outcome.validation = data, validation
                outcome.transitions.append(RetryState.ACCEPTED)
                return outcome

            if index < total:
                correction = build_correction_prompt(validation.errors)
                outcome.transitions.append(RetryState.RETRYING)
                logger.info("Retrying with correction prompt (%d errors itemized)", len(validation.errors))

        outcome.transitions.append(RetryState.EXHAUSTED)
        if best is not None:
            outcome.data, outcome.validation = best
            logger.info("Attempts exhausted; returning best attempt at %.0f%% confidence", best[1].confidence)
        else:
            logger.warning("Attempts exhausted with no parseable model output")
        return outcome
