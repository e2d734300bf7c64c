"""
Report Engine
=============
Post-extraction summary.

After each extraction pass, reports:
    - Total Segments
    - Visible / Hidden Segments
    - Segments With Decoding Errors
    - Unterminated Segments
    - Match annotation breakdown
    - Metadata key breakdown

Never silently ignores failures.
"""

from __future__ import annotations

import logging
from collections import Counter

from .models import (
    ExtractionReport,
    ExtractionResult,
    MatchStatus,
    clean_metadata,
)

logger = logging.getLogger(__name__)


class ReportEngine:
    """
    Summarizes an extraction result.
    """

    def validate(self, result: ExtractionResult) -> ExtractionReport:
        """
        Build the report for one extraction result.

        Args:
            result: Output of a walker pass.

        Returns:
            ExtractionReport; carries the error when the pass failed.
        """
        report = ExtractionReport()

        if not result.succeeded:
            logger.warning(f"Extraction failed: {result.error}")
            report.error = result.error
            return report

        segments = result.text_elements
        if not segments:
            logger.warning("No segments to report on")
            return report

        report.total_segments = len(segments)
        statuses: Counter = Counter()
        keys: Counter = Counter()

        for index, segment in enumerate(segments):
            if segment.is_visible:
                report.visible_segments += 1
            else:
                report.hidden_segments += 1

            if segment.decoding_error:
                report.decoding_errors.append(index)

            if segment.unterminated:
                report.unterminated_segments.append(index)

            statuses[segment.match_status] += 1
            keys.update(clean_metadata(segment).keys())

        report.matched = statuses[MatchStatus.MATCHED]
        report.unmatched = statuses[MatchStatus.UNMATCHED]
        report.unknown = statuses[MatchStatus.UNKNOWN]
        report.metadata_keys = dict(sorted(keys.items()))

        # Log summary
        logger.info("=" * 60)
        logger.info("EXTRACTION REPORT")
        logger.info("=" * 60)
        logger.info(f"Total Segments: {report.total_segments}")
        logger.info(
            f"Visible Segments: {report.visible_segments} "
            f"({report.visible_rate}%)"
        )
        logger.info(f"Hidden Segments: {report.hidden_segments}")
        logger.info(f"Decoding Errors: {len(report.decoding_errors)}")
        logger.info(
            f"Unterminated Segments: {len(report.unterminated_segments)}"
        )
        logger.info(
            f"Matched / Unmatched / Unknown: "
            f"{report.matched} / {report.unmatched} / {report.unknown}"
        )

        if report.metadata_keys:
            logger.info("Metadata Keys:")
            for key, count in report.metadata_keys.items():
                logger.info(f"  • {key}: {count}")

        logger.info("=" * 60)

        return report
