"""Pain-signal scoring: a fixed rubric, a clamped 0-10 composite, and a treasury gate.

Rubric (evaluated in this order; rules are independent and may all fire):

=================  ===========================================  ======
Key                Condition                                    Points
=================  ===========================================  ======
Multi-chain        3 or more chains                             +4
RWA                category mentions "rwa" / "real world"       +5
TVL decline        TVL change <= -20% (7d value, 30d proxy)     +3
Volume/MCap        24h volume / mcap >= 15%                     +2
ATH drawdown       price <= 70% below all-time high             +2
Lending/CDP        category mentions "lending" / "cdp"          +2
DEX/AMM            category mentions "dex" / "amm"              +2
7d price swing     abs(7d price change) >= 25%                  +1
Dead Repo          GitHub data present and 0 commits in 30d     -5
=================  ===========================================  ======

The treasury gate caps the score at 4 for protocols under $5M TVL that are not
known to be VC-backed. It can only lower a score.
"""
from __future__ import annotations

from dataclasses import dataclass

from cryptoprospect.records import PainSignal, RawProspect

SCORE_MIN = 0.0
SCORE_MAX = 10.0
TREASURY_GATE_TVL = 5_000_000
TREASURY_GATE_CAP = 4.0


@dataclass(frozen=True)
class GateResult:
    score: float
    treasury_gated: bool


@dataclass(frozen=True)
class ScoreResult:
    signals: list[PainSignal]
    raw_score: float
    score: float
    treasury_gated: bool


def compute_pain_signals(raw: RawProspect) -> list[PainSignal]:
    signals: list[PainSignal] = []
    category = (raw.category or "").lower()

    if len(raw.chains) >= 3:
        signals.append(PainSignal(
            "Multi-chain", 4,
            f"Deployed on {len(raw.chains)} chains: treasury reconciliation across chains is a common pain point.",
        ))

    if "rwa" in category or "real world" in category:
        signals.append(PainSignal(
            "RWA", 5,
            "RWA category: off-chain/on-chain asset reconciliation and reporting gaps.",
        ))

    tvl_change = raw.tvl_change_1m or 0.0
    if tvl_change <= -20:
        signals.append(PainSignal(
            "TVL decline", 3,
            f"TVL down {round(-tvl_change)}% (30d proxy): burn rate visibility and investor reporting pressure.",
        ))

    mcap = raw.mcap or 0.0
    volume = raw.volume or 0.0
    ratio = volume / mcap * 100 if mcap > 0 else 0.0
    if ratio >= 15:
        signals.append(PainSignal(
            "Volume/MCap", 2,
            f"Volume/MCap {ratio:.1f}%: active trading desk needs reporting.",
        ))

    ath = raw.ath_change_pct or 0.0
    if ath <= -70:
        signals.append(PainSignal(
            "ATH drawdown", 2,
            f"ATH drawdown {round(-ath)}%: treasury pressure and runway modeling.",
        ))

    if "lending" in category or "cdp" in category:
        signals.append(PainSignal(
            "Lending/CDP", 2,
            "Lending/CDP category: utilization rate and liquidation risk reporting gaps.",
        ))

    if "dex" in category or "amm" in category:
        signals.append(PainSignal(
            "DEX/AMM", 2,
            "DEX/AMM category: fee revenue vs IL P&L often missing.",
        ))

    price_7d = raw.price_change_7d or 0.0
    if abs(price_7d) >= 25:
        signals.append(PainSignal(
            "7d price swing", 1,
            f"7-day price swing {price_7d:+.1f}%: investor comms burden.",
        ))

    activity = raw.github_activity
    if activity is not None and activity.commit_count_30d == 0:
        signals.append(PainSignal(
            "Dead Repo", -5,
            "No commits in last 30 days: abandoned project, flight risk.",
        ))

    return signals


def compute_raw_score(signals: list[PainSignal]) -> float:
    """Sum of signal points, rounded to one decimal and clamped to [0, 10]."""
    total = round(float(sum(s.points for s in signals)), 1)
    return max(SCORE_MIN, min(SCORE_MAX, total))


def apply_treasury_gate(raw_score: float, tvl: float, vc_backed: bool | None = None) -> GateResult:
    if vc_backed:
        return GateResult(raw_score, False)
    if tvl < TREASURY_GATE_TVL:
        return GateResult(min(raw_score, TREASURY_GATE_CAP), True)
    return GateResult(raw_score, False)


def score_prospect(raw: RawProspect) -> ScoreResult:
    signals = compute_pain_signals(raw)
    raw_score = compute_raw_score(signals)
    gate = apply_treasury_gate(raw_score, raw.tvl, raw.vc_backed)
    return ScoreResult(signals, raw_score, gate.score, gate.treasury_gated)
