"""Correlation engine: pairwise Pearson analysis over the factor catalog.

For one user, every unordered pair of catalog factors is correlated over the
records in the lookback window. Pairs with enough samples and |r| at or above
the threshold are persisted (upserted by identity key) and later turned into
plain-language insights.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta

from healthsync.core.storage.models import (
    Correlation,
    CorrelationInsight,
    Direction,
    HealthRecord,
    Significance,
)
from healthsync.domains.health.connectors import HealthStore
from healthsync.domains.health.domain_logic.engine_config import Clock, CorrelationConfig, utc_now
from healthsync.domains.health.domain_logic.errors import InvalidRequestError, RunReport
from healthsync.domains.health.domain_logic.factors import factor_pairs, paired_series
from healthsync.domains.health.domain_logic.guards import guarded_read, guarded_write
from healthsync.domains.health.domain_logic.numeric import pearson_correlation
from healthsync.domains.health.domain_logic.templates import (
    InsightTemplate,
    potential_impact,
    recommendation_for,
)

logger = logging.getLogger(__name__)

INSIGHT_SIGNIFICANCE = (Significance.STRONG, Significance.VERY_STRONG)


def correlation_confidence(sample_size: int, strength: float, full_sample_size: int = 50) -> float:
    """Blend of sample-size adequacy and |r|, in [0, 1]."""
    sample_confidence = min(sample_size / full_sample_size, 1.0)
    return (sample_confidence + abs(strength)) / 2


def significance_for(strength: float) -> Significance:
    magnitude = abs(strength)
    if magnitude >= 0.8:
        return Significance.VERY_STRONG
    if magnitude >= 0.6:
        return Significance.STRONG
    if magnitude >= 0.4:
        return Significance.MODERATE
    return Significance.WEAK


def direction_for(strength: float) -> Direction:
    return Direction.POSITIVE if strength > 0 else Direction.NEGATIVE


def compute_correlations(
    user_id: str,
    records: list[HealthRecord],
    config: CorrelationConfig,
    computed_at: datetime,
) -> list[Correlation]:
    """Correlations that pass the sample-size and strength gates.

    Pure: no I/O. Records are expected oldest first.
    """
    if len(records) < config.min_data_points:
        return []

    range_start = records[0].timestamp
    range_end = records[-1].timestamp

    found: list[Correlation] = []
    for primary, secondary in factor_pairs():
        xs, ys = paired_series(records, primary, secondary)
        if len(xs) < config.min_data_points:
            continue
        r = pearson_correlation(xs, ys)
        if abs(r) < config.correlation_threshold:
            continue
        found.append(
            Correlation(
                user_id=user_id,
                primary_factor=primary.value,
                secondary_factor=secondary.value,
                strength=r,
                confidence=correlation_confidence(
                    len(xs), r, config.full_confidence_sample_size
                ),
                significance=significance_for(r),
                direction=direction_for(r),
                data_point_count=len(xs),
                computed_at=computed_at,
                time_range_start=range_start,
                time_range_end=range_end,
            )
        )
    return found


def insight_for(correlation: Correlation) -> CorrelationInsight | None:
    """Render the curated insight for a correlation, or None if the pair has no template."""
    template = InsightTemplate.for_pair(correlation.primary_factor, correlation.secondary_factor)
    if template is None:
        return None
    return CorrelationInsight(
        correlation_id=correlation.id,
        primary_factor=correlation.primary_factor,
        secondary_factor=correlation.secondary_factor,
        description=template.render(correlation.strength, correlation.direction),
        recommendation=recommendation_for(correlation.primary_factor, correlation.direction),
        potential_impact=potential_impact(correlation.strength),
    )


class CorrelationEngine:
    """Discovers and persists factor correlations for one user at a time.

    Usage::

        engine = CorrelationEngine(store)
        correlations = await engine.analyze("user-1")
        insights = await engine.derive_insights("user-1")
    """

    def __init__(
        self,
        store: HealthStore,
        config: CorrelationConfig | None = None,
        clock: Clock = utc_now,
    ) -> None:
        self._store = store
        self._config = config or CorrelationConfig()
        self._clock = clock

    async def analyze(
        self,
        user_id: str,
        lookback_days: int | None = None,
        *,
        config: CorrelationConfig | None = None,
    ) -> list[Correlation]:
        """Compute and upsert qualifying correlations; returns those stored.

        Raises:
            InvalidRequestError: If ``lookback_days`` is not between 1 and
                the configured maximum.
            DataUnavailableError: If the record fetch fails or times out.
        """
        report = await self.analyze_report(user_id, lookback_days, config=config)
        return report.items

    async def analyze_report(
        self,
        user_id: str,
        lookback_days: int | None = None,
        *,
        config: CorrelationConfig | None = None,
    ) -> RunReport[Correlation]:
        """Like ``analyze`` but also reports failed upserts."""
        cfg = config or self._config
        days = lookback_days if lookback_days is not None else cfg.lookback_days
        if not 1 <= days <= cfg.max_lookback_days:
            raise InvalidRequestError(
                user_id, "lookback_days", f"must be between 1 and {cfg.max_lookback_days}, got {days}"
            )
        now = self._clock()

        records = await guarded_read(
            self._store.fetch_health_records(user_id, now - timedelta(days=days)),
            user_id=user_id,
            operation="fetch_health_records",
            timeout=cfg.store_timeout_seconds,
        )
        if len(records) < cfg.min_data_points:
            logger.info(
                "Insufficient data for correlation analysis (user=%s): %d records, need %d",
                user_id,
                len(records),
                cfg.min_data_points,
            )
            return RunReport()

        report: RunReport[Correlation] = RunReport()
        for correlation in compute_correlations(user_id, records, cfg, now):
            stored, failure = await guarded_write(
                self._store.upsert_correlation(correlation),
                user_id=user_id,
                operation="upsert_correlation",
                key=f"{correlation.primary_factor}-{correlation.secondary_factor}",
                timeout=cfg.store_timeout_seconds,
            )
            if failure is not None:
                report.write_failures.append(failure)
            else:
                report.items.append(stored)

        logger.info(
            "Correlation analysis for user %s: %d records, %d correlations stored, %d write failures",
            user_id,
            len(records),
            len(report.items),
            len(report.write_failures),
        )
        return report

    async def derive_insights(
        self, user_id: str, *, config: CorrelationConfig | None = None
    ) -> list[CorrelationInsight]:
        """Insights for the user's strong and very-strong stored correlations.

        Pairs without a curated template are skipped.
        """
        cfg = config or self._config
        correlations = await guarded_read(
            self._store.fetch_correlations(user_id, significance=INSIGHT_SIGNIFICANCE),
            user_id=user_id,
            operation="fetch_correlations",
            timeout=cfg.store_timeout_seconds,
        )
        insights = [i for i in (insight_for(c) for c in correlations) if i is not None]
        logger.info(
            "Derived %d insights from %d correlations for user %s",
            len(insights),
            len(correlations),
            user_id,
        )
        return insights
