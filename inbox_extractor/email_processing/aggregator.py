"""
Result Aggregation

Combines per-unit extraction results into one attributed answer for the
email. The same merge rule is used to fold chunk results of an oversized
unit back into a single unit result.

Merge rule, applied per key:
- both values lists: union, duplicates removed by equality
- both values maps: shallow merge, later keys win
- existing list, new scalar: scalar appended unless already present
- equal values: kept once
- differing values: promoted to a list holding both
- None counts as absent
"""

import logging
from copy import deepcopy
from typing import Any, Dict, Iterable, List

from inbox_extractor.email_processing.models import (
    EMAIL_SOURCE_ID,
    AggregatedResult,
    SourcedData,
    UnitAnalysisResult,
)

logger = logging.getLogger(__name__)


def _union(existing: List[Any], new: Iterable[Any]) -> List[Any]:
    merged = list(existing)
    for item in new:
        if item not in merged:
            merged.append(deepcopy(item))
    return merged


def merge_value(existing: Any, new: Any) -> Any:
    """Merge two values of the same key; neither argument is modified."""
    if new is None:
        return deepcopy(existing)
    if existing is None:
        return deepcopy(new)

    if isinstance(existing, list) and isinstance(new, list):
        return _union(deepcopy(existing), new)
    if isinstance(existing, dict) and isinstance(new, dict):
        return {**deepcopy(existing), **deepcopy(new)}
    if isinstance(existing, list):
        return _union(deepcopy(existing), [new])
    if isinstance(new, list):
        return _union([deepcopy(existing)], new)
    if existing == new:
        return deepcopy(existing)
    return [deepcopy(existing), deepcopy(new)]


def merge_extracted_data(existing: Dict[str, Any], new: Dict[str, Any]) -> Dict[str, Any]:
    """
    Merge two extracted-data maps key by key.

    Args:
        existing: Data accumulated so far
        new: Data from the next unit or chunk

    Returns:
        A new map; inputs are left untouched
    """
    merged = deepcopy(existing) if existing else {}
    for key, value in (new or {}).items():
        if key in merged:
            merged[key] = merge_value(merged[key], value)
        else:
            merged[key] = deepcopy(value)
    return merged


class ResultAggregator:
    """Folds unit results into the final AggregatedResult."""

    def aggregate(self, results: List[UnitAnalysisResult]) -> AggregatedResult:
        """
        Aggregate the results of all analyzed units.

        Only matched units contribute. Overall confidence is the mean of the
        matched units' confidences. Per-source data lists the email first,
        then sources by descending confidence, ties in input order.

        Args:
            results: Unit results in retrieval order

        Returns:
            AggregatedResult, matched=False with empty data when nothing matched
        """
        matched = [result for result in results if result.matched]
        if not matched:
            logger.info(f"No matches across {len(results)} analyzed units")
            return AggregatedResult.empty()

        merged_data: Dict[str, Any] = {}
        for result in matched:
            merged_data = merge_extracted_data(merged_data, result.extracted_data)

        overall_confidence = sum(result.confidence for result in matched) / len(matched)

        data_by_source = self._group_by_source(matched)
        data_by_source.sort(key=lambda sourced: (sourced.source != EMAIL_SOURCE_ID, -sourced.confidence))

        logger.info(
            f"Aggregated {len(matched)} matched units from {len(results)} analyzed, "
            f"confidence {overall_confidence:.2f}"
        )

        return AggregatedResult(
            matched=True,
            merged_data=merged_data,
            overall_confidence=overall_confidence,
            data_by_source=data_by_source,
            total_matched_units=len(matched)
        )

    @staticmethod
    def _group_by_source(results: List[UnitAnalysisResult]) -> List[SourcedData]:
        grouped: Dict[str, List[UnitAnalysisResult]] = {}
        for result in results:
            grouped.setdefault(result.source_id, []).append(result)

        sourced = []
        for source, group in grouped.items():
            data: Dict[str, Any] = {}
            for result in group:
                data = merge_extracted_data(data, result.extracted_data)
            sourced.append(SourcedData(
                source=source,
                data=data,
                reasoning=" | ".join(r.reasoning for r in group if r.reasoning),
                confidence=sum(r.confidence for r in group) / len(group)
            ))
        return sourced
