"""
Processor detection from file headers and file name.

Header score = |headers ∩ signature| / |signature| using normalized header
comparison. The best strictly-greater score above the confidence threshold
wins, so registry order breaks ties. A processor-name fragment in the file
name overrides the header guess unconditionally.
"""

from typing import Optional

import structlog

from residuals.config import settings
from residuals.errors import UnknownProcessorError
from residuals.models.enums import DetectionSource
from residuals.observability.metrics import processor_detections_total
from residuals.pipeline.field_extractor import normalize_header
from residuals.pipeline.schema_registry import SchemaRegistry, default_registry
from residuals.schemas.processors import DetectionResult, ProcessorSchema

logger = structlog.get_logger(__name__)


def signature_score(headers: list[str], schema: ProcessorSchema) -> tuple[float, list[str]]:
    """Fraction of the schema signature present in the headers, plus the matched columns."""
    present = {normalize_header(h) for h in headers if h is not None}
    present.discard("")
    matched = [col for col in schema.signature if normalize_header(col) in present]
    return len(matched) / len(schema.signature), matched


class FormatDetector:

    def __init__(
        self,
        registry: Optional[SchemaRegistry] = None,
        threshold: Optional[float] = None,
    ):
        self.registry = registry or default_registry()
        self.threshold = settings.DETECTION_CONFIDENCE_THRESHOLD if threshold is None else threshold

    def detect(self, headers: list[str], file_name: str = "") -> DetectionResult:
        best_match: Optional[ProcessorSchema] = None
        best_score = 0.0
        best_signals: list[str] = []
        scores: dict[str, tuple[float, list[str]]] = {}

        for schema in self.registry:
            score, matched = signature_score(headers, schema)
            scores[schema.name] = (score, matched)
            if score > self.threshold and score > best_score:
                best_match = schema
                best_score = score
                best_signals = [f"{schema.name}:header:{col}" for col in matched]

        # Filename hint beats header inference
        hinted = self._match_filename(file_name)
        if hinted is not None:
            score, matched = scores[hinted.name]
            hint = next(h for h in hinted.filename_hints if h in file_name.lower())
            signals = [f"{hinted.name}:filename:{hint}"]
            signals += [f"{hinted.name}:header:{col}" for col in matched]
            if best_match is not None and best_match.name != hinted.name:
                logger.info("filename_hint_overrides_headers",
                            file_name=file_name,
                            hinted=hinted.name,
                            header_guess=best_match.name,
                            header_confidence=round(best_score, 3))
            return self._result(hinted.name, score, DetectionSource.FILENAME, signals, file_name)

        if best_match is not None:
            return self._result(best_match.name, best_score, DetectionSource.HEADERS, best_signals, file_name)

        top = max((s for s, _ in scores.values()), default=0.0)
        logger.warning("processor_not_detected", file_name=file_name, best_score=round(top, 3),
                       headers=headers[:20])
        return DetectionResult(processor_name=None, confidence=top)

    def detect_or_raise(self, headers: list[str], file_name: str = "") -> DetectionResult:
        result = self.detect(headers, file_name)
        if not result.detected:
            raise UnknownProcessorError(file_name or "<unnamed>", best_score=result.confidence)
        return result

    def resolve(
        self,
        headers: list[str],
        file_name: str = "",
        processor_name: Optional[str] = None,
    ) -> DetectionResult:
        """
        Caller-supplied processor names are trusted and must exist in the
        registry (SchemaNotFoundError otherwise). Without one, detect.
        """
        if processor_name:
            schema = self.registry.get_schema(processor_name)
            score, matched = signature_score(headers, schema)
            signals = [f"{schema.name}:caller"] + [f"{schema.name}:header:{col}" for col in matched]
            return self._result(schema.name, score, DetectionSource.CALLER, signals, file_name)
        return self.detect_or_raise(headers, file_name)

    def _match_filename(self, file_name: str) -> Optional[ProcessorSchema]:
        """Several hints in one name resolve to the first schema in registry order."""
        lowered = (file_name or "").lower()
        if not lowered:
            return None
        for schema in self.registry:
            if any(hint in lowered for hint in schema.filename_hints):
                return schema
        return None

    def _result(
        self,
        processor_name: str,
        confidence: float,
        source: DetectionSource,
        signals: list[str],
        file_name: str,
    ) -> DetectionResult:
        processor_detections_total.labels(processor=processor_name, source=source.value).inc()
        logger.info("processor_detected", processor=processor_name, source=source.value,
                    confidence=round(confidence, 3), file_name=file_name)
        return DetectionResult(
            processor_name=processor_name,
            confidence=confidence,
            source=source,
            signals=signals,
        )
