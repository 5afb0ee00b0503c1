"""Map triggered pain signals to sellable dashboard deliverables."""
from __future__ import annotations

from collections.abc import Iterable

from cryptoprospect.records import DeliverableRecommendation, PainSignal

# {signal key: (title, relevance, value_min, value_max, build_hours)}
DELIVERABLE_CATALOG: dict[str, tuple[str, int, int, int, int]] = {
    "Multi-chain": ("Cross-chain treasury reconciliation dashboard", 9, 3000, 8000, 8),
    "RWA": ("RWA / off-chain asset reconciliation report", 10, 4000, 10000, 12),
    "TVL decline": ("Burn rate & runway visibility dashboard", 8, 2500, 6000, 6),
    "Volume/MCap": ("Trading desk P&L and volume reporting", 8, 2000, 5000, 5),
    "ATH drawdown": ("Treasury pressure & runway model", 7, 2000, 5000, 6),
    "Lending/CDP": ("Utilization & liquidation risk dashboard", 9, 3000, 7000, 8),
    "DEX/AMM": ("Fee revenue vs IL P&L dashboard", 9, 2500, 6000, 7),
    "7d price swing": ("Investor comms one-pager template", 5, 1500, 3500, 3),
}


def get_deliverable_recommendations(signals: Iterable[PainSignal]) -> list[DeliverableRecommendation]:
    """Recommendations for positive signals, by relevance then max value (both desc)."""
    seen: set[str] = set()
    recs: list[DeliverableRecommendation] = []
    for signal in signals:
        if signal.points <= 0 or signal.key in seen or signal.key not in DELIVERABLE_CATALOG:
            continue
        seen.add(signal.key)
        title, relevance, value_min, value_max, hours = DELIVERABLE_CATALOG[signal.key]
        recs.append(DeliverableRecommendation(
            deliverable_id=signal.key,
            title=title,
            relevance=relevance,
            estimated_value_min=value_min,
            estimated_value_max=value_max,
            build_hours=hours,
        ))
    recs.sort(key=lambda r: (r.relevance, r.estimated_value_max), reverse=True)
    return recs
