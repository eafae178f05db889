"""
Report generation functions for GuildREL
Builds JSON-ready payloads and plain-text renderings of affinity results
"""

from typing import Dict, Any, List, Optional

import pandas as pd

from .classifier import Thresholds, classify_directional
from .models import AffinityAnalysis, AffinityScore, User


def summarize_relationships(scores: List[AffinityScore], thresholds: Thresholds) -> Dict[str, Any]:
    """
    Summary statistics over a top-N list.

    VC-focused means VC points outweigh all text points combined;
    text-focused is the reverse (ties count as neither).
    """
    if not scores:
        return {
            "total_relationships": 0,
            "average_score": 0.0,
            "bands": {},
            "vc_focused": 0,
            "text_focused": 0,
        }

    df = pd.DataFrame({
        "total": [s.total_score for s in scores],
        "vc": [s.breakdown["vc_relative"] for s in scores],
        "text": [s.breakdown["reactions"] + s.breakdown["mentions"] + s.breakdown["replies"] for s in scores],
    })
    df["band"] = df["total"].apply(lambda v: classify_directional(v, thresholds))

    return {
        "total_relationships": len(df),
        "average_score": round(float(df["total"].mean()), 2),
        "bands": {band: int(n) for band, n in df["band"].value_counts().items()},
        "vc_focused": int((df["vc"] > df["text"]).sum()),
        "text_focused": int((df["vc"] < df["text"]).sum()),
    }


def build_top_report(
    user: str,
    profile: Optional[User],
    scores: List[AffinityScore],
    thresholds: Thresholds,
) -> Dict[str, Any]:
    """JSON payload for a top-relationships listing."""
    return {
        "user": profile.to_dict() if profile else {"user_id": user},
        "relationships": [
            dict(s.to_dict(), strength=classify_directional(s.total_score, thresholds))
            for s in scores
        ],
        "summary": summarize_relationships(scores, thresholds),
    }


# ============================================================================
# TEXT RENDERING
# ============================================================================

def _vc_lines(score: AffinityScore, indent: str) -> List[str]:
    vc = score.vc_details
    if vc.session_count == 0:
        return []
    lines = [
        f"{indent}Voice Chat:",
        f"{indent}  Total time together: {round(vc.total_minutes)} minutes",
        f"{indent}  Sessions: {vc.session_count}",
        f"{indent}  Average session: {round(vc.average_session_length)} minutes",
        f"{indent}  Relative VC score: {vc.relative_score:.1f}% of total VC time",
    ]
    if vc.top_channels:
        lines.append(f"{indent}  Top channels:")
        for i, channel in enumerate(vc.top_channels[:3], 1):
            lines.append(f"{indent}    {i}. {channel['channel_name']}: {round(channel['minutes'])} minutes")
    return lines


def render_score(score: AffinityScore, from_label: str, to_label: str, indent: str = "  ") -> str:
    """Breakdown, counts, time range and VC details for one direction."""
    b, c, tr = score.breakdown, score.counts, score.time_range
    lines = [
        f"{from_label} -> {to_label}: {score.total_score:.2f} (rank #{score.rank}, {score.relative_score:.1f}%)",
        f"{indent}Breakdown:",
        f"{indent}  VC Relative Score: {b['vc_relative']:.2f} points",
        f"{indent}  Replies: {b['replies']:.2f} points",
        f"{indent}  Mentions: {b['mentions']:.2f} points",
        f"{indent}  Reactions: {b['reactions']:.2f} points",
        f"{indent}Interactions:",
        f"{indent}  VC Sessions: {c['vc_sessions']}",
        f"{indent}  Replies: {c['replies']}",
        f"{indent}  Mentions: {c['mentions']}",
        f"{indent}  Reactions: {c['reactions']}",
    ]
    if tr.first is not None and tr.last is not None:
        lines.extend([
            f"{indent}Time Range: {tr.days_active} days active",
            f"{indent}  First: {tr.first.date().isoformat()}",
            f"{indent}  Last: {tr.last.date().isoformat()}",
        ])
    lines.extend(_vc_lines(score, indent))
    return "\n".join(lines)


def render_analysis(analysis: AffinityAnalysis) -> str:
    label1 = analysis.user1.label if analysis.user1 else analysis.affinity.from_user
    label2 = analysis.user2.label if analysis.user2 else analysis.affinity.to_user

    lines = [
        "AFFINITY ANALYSIS",
        "=" * 50,
        f"User 1: {label1} ({analysis.affinity.from_user})",
        f"User 2: {label2} ({analysis.affinity.to_user})",
        f"Mutual Score: {analysis.mutual_score:.2f}",
        f"Relationship Type: {analysis.relationship_type.upper()}",
        "",
        render_score(analysis.affinity, label1, label2),
        "",
        render_score(analysis.reverse_affinity, label2, label1),
    ]
    if analysis.insights:
        lines.extend(["", "Insights:"])
        lines.extend(f"  - {insight}" for insight in analysis.insights)
    return "\n".join(lines)


def render_top(report: Dict[str, Any], scores: List[AffinityScore], labels: Dict[str, str]) -> str:
    """Plain-text version of build_top_report()."""
    user = report["user"]
    owner = user.get("display_name") or user.get("username") or user["user_id"]

    lines = [f"TOP {len(scores)} RELATIONSHIPS FOR {owner.upper()}", "=" * 80]
    for i, (score, entry) in enumerate(zip(scores, report["relationships"]), 1):
        target = labels.get(score.to_user, "Unknown User")
        lines.append("")
        lines.append(f"{i}. {target} ({score.to_user}) [{entry['strength'].upper()}]")
        lines.append(render_score(score, owner, target, indent="   "))
        lines.append("   " + "-" * 60)

    summary = report["summary"]
    lines.extend([
        "",
        "SUMMARY STATISTICS",
        "=" * 40,
        f"Total Relationships: {summary['total_relationships']}",
        f"Average Score: {summary['average_score']:.2f}",
    ])
    for band, n in sorted(summary["bands"].items()):
        lines.append(f"{band.capitalize()}: {n}")
    lines.append(f"VC-Focused Relationships: {summary['vc_focused']}")
    lines.append(f"Text-Focused Relationships: {summary['text_focused']}")
    return "\n".join(lines)
