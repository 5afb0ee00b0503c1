from __future__ import annotations

from cryptoprospect.deliverables import DELIVERABLE_CATALOG, get_deliverable_recommendations
from cryptoprospect.records import PainSignal


def test_ignores_negative_and_unknown_signals():
    recs = get_deliverable_recommendations([
        PainSignal("Dead Repo", -5, ""),
        PainSignal("Something new", 3, ""),
    ])
    assert recs == []


def test_sorted_by_relevance_then_value():
    recs = get_deliverable_recommendations([
        PainSignal("DEX/AMM", 2, ""),
        PainSignal("7d price swing", 1, ""),
        PainSignal("Multi-chain", 4, ""),
        PainSignal("RWA", 5, ""),
        PainSignal("Lending/CDP", 2, ""),
    ])
    assert [r.deliverable_id for r in recs] == [
        "RWA", "Multi-chain", "Lending/CDP", "DEX/AMM", "7d price swing",
    ]


def test_duplicates_collapse():
    recs = get_deliverable_recommendations([PainSignal("RWA", 5, "a"), PainSignal("RWA", 5, "b")])
    assert len(recs) == 1
    title, relevance, value_min, value_max, hours = DELIVERABLE_CATALOG["RWA"]
    rec = recs[0]
    assert (rec.title, rec.relevance, rec.estimated_value_min, rec.estimated_value_max, rec.build_hours) == (
        title, relevance, value_min, value_max, hours,
    )


def test_catalog_covers_every_positive_rule():
    assert set(DELIVERABLE_CATALOG) == {
        "Multi-chain", "RWA", "TVL decline", "Volume/MCap",
        "ATH drawdown", "Lending/CDP", "DEX/AMM", "7d price swing",
    }
