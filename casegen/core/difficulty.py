"""
Difficulty Profile Table

Pure lookup from a difficulty tier to the numeric ranges that parametrize every
generation prompt.

Key concepts:
- Ranges are inclusive (min, max) tuples
- A missing or blank tier resolves to Rookie; an unknown tier is an error
- Directive text for document generation groups tiers into four bands
"""

from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple


Range = Tuple[int, int]


@dataclass(frozen=True)
class DifficultyProfile:
    """Numeric ranges and flavour for one difficulty tier."""
    name: str
    description: str
    suspects: Range
    documents: Range
    evidences: Range
    estimated_duration_minutes: Range
    red_herrings: int
    gated_documents: int
    forensics_complexity: str
    complexity_factors: Tuple[str, ...] = field(default_factory=tuple)

    def to_dict(self) -> Dict:
        return {
            "name": self.name,
            "description": self.description,
            "suspects": {"min": self.suspects[0], "max": self.suspects[1]},
            "documents": {"min": self.documents[0], "max": self.documents[1]},
            "evidences": {"min": self.evidences[0], "max": self.evidences[1]},
            "estimatedDurationMinutes": {
                "min": self.estimated_duration_minutes[0],
                "max": self.estimated_duration_minutes[1],
            },
            "redHerrings": self.red_herrings,
            "gatedDocuments": self.gated_documents,
            "forensicsComplexity": self.forensics_complexity,
            "complexityFactors": list(self.complexity_factors),
        }


DEFAULT_DIFFICULTY = "Rookie"

DIFFICULTY_PROFILES: Dict[str, DifficultyProfile] = {
    "Rookie": DifficultyProfile(
        name="Rookie",
        description="very low; straight line; minimal jargon",
        suspects=(2, 3),
        documents=(6, 8),
        evidences=(3, 5),
        estimated_duration_minutes=(30, 60),
        red_herrings=0,
        gated_documents=0,
        forensics_complexity="basic",
        complexity_factors=("linear_investigation", "clear_evidence", "simple_motive"),
    ),
    "Detective": DifficultyProfile(
        name="Detective",
        description="low; basic cross-checks; a couple red herrings",
        suspects=(3, 4),
        documents=(8, 12),
        evidences=(4, 7),
        estimated_duration_minutes=(60, 120),
        red_herrings=2,
        gated_documents=1,
        forensics_complexity="standard",
        complexity_factors=("basic_cross_checks", "simple_red_herrings", "witness_verification"),
    ),
    "Detective2": DifficultyProfile(
        name="Detective2",
        description="medium; branching; some misdirection",
        suspects=(4, 5),
        documents=(10, 14),
        evidences=(6, 9),
        estimated_duration_minutes=(120, 180),
        red_herrings=3,
        gated_documents=2,
        forensics_complexity="intermediate",
        complexity_factors=("branching_paths", "misdirection", "timeline_analysis", "evidence_correlation"),
    ),
    "Sergeant": DifficultyProfile(
        name="Sergeant",
        description="medium-high; multi-source correlation",
        suspects=(5, 6),
        documents=(12, 16),
        evidences=(8, 12),
        estimated_duration_minutes=(180, 240),
        red_herrings=4,
        gated_documents=3,
        forensics_complexity="advanced",
        complexity_factors=("multi_source_correlation", "advanced_forensics", "witness_reliability", "chain_of_custody"),
    ),
    "Lieutenant": DifficultyProfile(
        name="Lieutenant",
        description="high; layered timeline; multiple gates",
        suspects=(6, 8),
        documents=(14, 18),
        evidences=(10, 15),
        estimated_duration_minutes=(240, 360),
        red_herrings=5,
        gated_documents=4,
        forensics_complexity="expert",
        complexity_factors=("layered_timeline", "multiple_gates", "evidence_dependencies", "expert_analysis", "technical_evidence"),
    ),
    "Captain": DifficultyProfile(
        name="Captain",
        description="very high; deep inference; adversarial noise",
        suspects=(7, 10),
        documents=(16, 22),
        evidences=(12, 18),
        estimated_duration_minutes=(360, 540),
        red_herrings=6,
        gated_documents=5,
        forensics_complexity="specialized",
        complexity_factors=("deep_inference", "adversarial_noise", "counterintelligence", "expert_witnesses", "complex_motives"),
    ),
    "Commander": DifficultyProfile(
        name="Commander",
        description="extreme; serial/global arcs; chained cases",
        suspects=(8, 12),
        documents=(18, 25),
        evidences=(15, 22),
        estimated_duration_minutes=(540, 720),
        red_herrings=8,
        gated_documents=6,
        forensics_complexity="cutting_edge",
        complexity_factors=("serial_connections", "global_implications", "chained_cases", "master_criminals", "international_scope"),
    ),
}

ALL_LEVELS: List[str] = list(DIFFICULTY_PROFILES.keys())

# Legacy Portuguese label still found in older seeds
_ALIASES = {"iniciante": "Rookie"}


def resolve_difficulty(difficulty: Optional[str]) -> str:
    """Return the canonical tier name for a user-supplied label."""
    if difficulty is None or not difficulty.strip():
        return DEFAULT_DIFFICULTY
    label = difficulty.strip()
    if label in DIFFICULTY_PROFILES:
        return label
    lowered = label.lower()
    if lowered in _ALIASES:
        return _ALIASES[lowered]
    for name in ALL_LEVELS:
        if name.lower() == lowered:
            return name
    raise ValueError(f"Unknown difficulty tier '{difficulty}'. Valid tiers: {', '.join(ALL_LEVELS)}")


def get_profile(difficulty: Optional[str]) -> DifficultyProfile:
    """Look up the profile for a tier (None/blank -> Rookie)."""
    return DIFFICULTY_PROFILES[resolve_difficulty(difficulty)]


def in_range(value: int, bounds: Range) -> bool:
    return bounds[0] <= value <= bounds[1]


def difficulty_directive(difficulty: Optional[str]) -> str:
    """Writing directive for document generation at the given tier."""
    tier = resolve_difficulty(difficulty)
    if tier == "Rookie":
        return (
            "DIFFICULTY DIRECTIVE (Rookie): clear, linear prose with minimal jargon. "
            "Evidence points straight at the facts; no deliberate misdirection."
        )
    if tier in ("Detective", "Detective2"):
        return (
            f"DIFFICULTY DIRECTIVE ({tier}): moderate technical detail. Include basic cross-checks "
            "between sources and a small amount of plausible misdirection."
        )
    if tier in ("Sergeant", "Lieutenant"):
        return (
            f"DIFFICULTY DIRECTIVE ({tier}): professional register with technical terminology. "
            "Facts must be correlated across several documents; timelines are layered."
        )
    return (
        f"DIFFICULTY DIRECTIVE ({tier}): expert-level density. Deep inference is required, "
        "adversarial noise is present and key facts surface only through multi-document analysis."
    )
