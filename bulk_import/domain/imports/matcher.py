"""
Model-matching engine: decides which record type a parsed row belongs to.

Every record type is scored on how many of its required fields the row
offers and how many of its declared fields the row's columns name. The
score depends only on the row's *shape* (its normalized column paths), so
results are cached per shape: a tabular file with one header is scored once
however many rows it has.
"""

import logging
import threading
from collections import OrderedDict
from dataclasses import dataclass
from typing import Dict, FrozenSet, List, Optional, Tuple

from bulk_import.core.config import settings
from bulk_import.domain.imports.catalog import RecordTypeDescriptor, SchemaCatalog
from bulk_import.domain.imports.parser import ParsedRow
from bulk_import.domain.imports.schema_mapper import FieldIndex, row_key_paths

logger = logging.getLogger(__name__)

# Scores are compared after rounding so float noise never flips a tie
_SCORE_PRECISION = 6


@dataclass(frozen=True)
class TypeScore:
    record_type: str
    confidence: float
    required_coverage: float
    matched_field_count: int
    missing_required_fields: Tuple[str, ...]


@dataclass(frozen=True)
class ModelMatchResult:
    row_index: int
    candidate_type: Optional[str]
    confidence: float
    matched_field_count: int
    missing_required_fields: Tuple[str, ...]
    required_coverage: float
    best_attempt: Optional[str] = None
    attempts: Tuple[TypeScore, ...] = ()

    @property
    def is_matched(self) -> bool:
        return self.candidate_type is not None


class ModelMatcher:
    """Scores rows against a schema catalog."""

    def __init__(
        self,
        catalog: SchemaCatalog,
        threshold: Optional[float] = None,
        required_weight: Optional[float] = None,
        field_weight: Optional[float] = None,
        cache_size: Optional[int] = None,
    ):
        self.catalog = catalog
        self.threshold = settings.match_confidence_threshold if threshold is None else threshold
        self.required_weight = settings.match_required_weight if required_weight is None else required_weight
        self.field_weight = settings.match_field_weight if field_weight is None else field_weight
        self._indexes: Dict[str, FieldIndex] = {rt.name: FieldIndex.build(rt) for rt in catalog}
        self.cache_size = settings.match_cache_size if cache_size is None else cache_size
        # Least recently used shapes are dropped first
        self._cache: "OrderedDict[Tuple[Optional[str], FrozenSet[str]], ModelMatchResult]" = OrderedDict()
        self._cache_lock = threading.Lock()

    @property
    def cached_shapes(self) -> int:
        return len(self._cache)

    def score(self, record_type: RecordTypeDescriptor, paths: FrozenSet[str]) -> TypeScore:
        index = self._indexes[record_type.name]

        matched = set()
        for key in paths:
            descriptor = index.by_path.get(key) or index.by_alias.get(key)
            if descriptor is not None:
                matched.add(descriptor.path)

        total_fields = len(record_type.fields)
        field_ratio = min(1.0, len(matched) / total_fields) if total_fields else 0.0

        present = index.present_required(set(paths))
        missing = tuple(p for p in record_type.field_paths if p in record_type.required_fields and p not in present)
        if record_type.required_fields:
            coverage = len(present) / len(record_type.required_fields)
        else:
            coverage = field_ratio

        confidence = coverage * self.required_weight + field_ratio * self.field_weight
        return TypeScore(
            record_type=record_type.name,
            confidence=round(confidence, _SCORE_PRECISION),
            required_coverage=round(coverage, _SCORE_PRECISION),
            matched_field_count=len(matched),
            missing_required_fields=missing,
        )

    def detect_model(self, row: ParsedRow, forced_type: Optional[str] = None) -> ModelMatchResult:
        """
        Pick the record type for ``row``.

        With ``forced_type`` scoring is skipped (confidence 1.0) but the
        missing required fields are still reported. Raises
        ``UnknownRecordTypeError`` when the forced type is not registered.
        """
        forced = self.catalog.require(forced_type).name if forced_type else None
        shape = frozenset(row_key_paths(row.raw_values))
        key = (forced, shape)

        with self._cache_lock:
            cached = self._cache.get(key)
            if cached is not None:
                self._cache.move_to_end(key)
        if cached is None:
            cached = self._forced(forced, shape) if forced else self._best(shape)
            with self._cache_lock:
                self._cache[key] = cached
                while len(self._cache) > self.cache_size:
                    self._cache.popitem(last=False)
            logger.debug(
                "Scored new row shape (%d columns): %s at %.2f",
                len(shape),
                cached.candidate_type or "unmatched",
                cached.confidence,
            )

        # Cached results are shape-level; stamp the row index on the way out
        return ModelMatchResult(
            row_index=row.row_index,
            candidate_type=cached.candidate_type,
            confidence=cached.confidence,
            matched_field_count=cached.matched_field_count,
            missing_required_fields=cached.missing_required_fields,
            required_coverage=cached.required_coverage,
            best_attempt=cached.best_attempt,
            attempts=cached.attempts,
        )

    def _forced(self, name: str, shape: FrozenSet[str]) -> ModelMatchResult:
        score = self.score(self.catalog.require(name), shape)
        return ModelMatchResult(
            row_index=0,
            candidate_type=name,
            confidence=1.0,
            matched_field_count=score.matched_field_count,
            missing_required_fields=score.missing_required_fields,
            required_coverage=score.required_coverage,
            best_attempt=name,
            attempts=(score,),
        )

    def _best(self, shape: FrozenSet[str]) -> ModelMatchResult:
        scores: List[TypeScore] = [self.score(rt, shape) for rt in self.catalog]
        if not scores:
            return ModelMatchResult(
                row_index=0,
                candidate_type=None,
                confidence=0.0,
                matched_field_count=0,
                missing_required_fields=(),
                required_coverage=0.0,
            )

        # Registration order is the final tie-break; sorted() is stable
        ranked = sorted(
            scores,
            key=lambda s: (-s.confidence, -s.required_coverage, -s.matched_field_count),
        )
        best = ranked[0]
        accepted = best.confidence >= self.threshold and best.required_coverage > 0
        return ModelMatchResult(
            row_index=0,
            candidate_type=best.record_type if accepted else None,
            confidence=best.confidence,
            matched_field_count=best.matched_field_count,
            missing_required_fields=best.missing_required_fields,
            required_coverage=best.required_coverage,
            best_attempt=best.record_type,
            attempts=tuple(ranked),
        )
