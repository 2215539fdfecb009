"""
Plan Prompts - Case Architecture
Four sub-steps: core premise, suspects, timeline, evidence with golden truth.
"""

# =============================================================================
# Plan Core
# =============================================================================

PLAN_CORE_SYSTEM_PROMPT = """You are a master architect of investigative cold cases. Generate the CORE STRUCTURE of a case plan.

DIFFICULTY PROFILE: {difficulty}
Description: {description}

COMPLEXITY GUIDELINES:
- Suspects: {suspects_min}-{suspects_max}
- Documents: {documents_min}-{documents_max}
- Evidence items: {evidences_min}-{evidences_max}
- False leads: {red_herrings}
- Gated documents: {gated_documents}
- Forensics complexity: {forensics_complexity}
- Estimated duration: {duration_min}-{duration_max} minutes

GEOGRAPHY/NAMING POLICY:
- No real street names, numbers, coordinates, or real brands/companies
- If a real city is needed, limit to City/State only; prefer abstract locations
- All names must be plausible and fictitious

OUTPUT: ONLY valid JSON conforming to the PlanCore schema. No comments or extra text."""

PLAN_CORE_USER_PROMPT_TEMPLATE = """
Generate the CORE STRUCTURE for a new investigative case.

## Seed
- Title hint: {title}
- Location hint: {location}
- Incident type: {incident_type}
- Difficulty: {difficulty}
- Timezone: {timezone}
- Target duration (minutes): {target_duration}
- Constraints: {constraints}

## Required Content
- title: strong, specific, engaging case title
- location: plausible abstract location (no real addresses)
- incidentType: coherent with the difficulty
- overview: clear investigative scope without revealing the solution
- victim: who was harmed, if anyone
- culpritSummary: SEALED ground truth of who did it and how (never shown to the player)
- difficulty: "{difficulty}"
- timezone: "{timezone}"
- targetDurationMinutes: within the difficulty profile

OUTPUT FORMAT: ONLY JSON valid by the PlanCore schema.
"""

# =============================================================================
# Plan Suspects
# =============================================================================

PLAN_SUSPECTS_SYSTEM_PROMPT = """You are a specialist in developing suspect profiles for investigative cases.

DIFFICULTY: {difficulty}
SUSPECT RANGE: {suspects_min}-{suspects_max}

Generate an initial list of suspects with:
- Unique IDs (S001, S002, etc.)
- Plausible fictitious names
- Clear roles/relationships to the case
- Initial motivations that will be expanded later

IMPORTANT: Do NOT reveal the culprit. Create plausible suspects where investigation is needed.

OUTPUT: ONLY valid JSON conforming to the PlanSuspects schema."""

PLAN_SUSPECTS_USER_PROMPT_TEMPLATE = """
Based on this core case plan, generate the initial suspect list:

{core_json}

Generate between {suspects_min} and {suspects_max} suspects.
Each suspect must have: suspectId (S001 format), name, role, initialMotive.

OUTPUT FORMAT: ONLY JSON valid by the PlanSuspects schema.
"""

# =============================================================================
# Plan Timeline
# =============================================================================

PLAN_TIMELINE_SYSTEM_PROMPT = """You are a timeline architect for investigative cases.

TIMEZONE: {timezone}

Create a chronologically ordered timeline of events with:
- Unique event IDs (E001, E002, etc.)
- ISO-8601 timestamps with the UTC offset of {timezone}
- Brief but specific event titles
- Locations (can be abstract)
- References to involved suspect IDs

TEMPORAL CONSISTENCY (CRITICAL):
- ALL timestamps MUST use ISO-8601 with a timezone offset
- Events must be chronologically ordered
- NO overlapping or conflicting timestamps

OUTPUT: ONLY valid JSON conforming to the PlanTimeline schema."""

PLAN_TIMELINE_USER_PROMPT_TEMPLATE = """
Based on this case core and suspects, generate a chronological timeline:

CORE PLAN:
{core_json}

SUSPECTS:
{suspects_json}

Create 5-10 key events that:
- Use timezone {timezone}
- Reference only the suspect IDs listed above
- Are chronologically ordered with realistic spacing

OUTPUT FORMAT: ONLY JSON valid by the PlanTimeline schema.
"""

# =============================================================================
# Plan Evidence
# =============================================================================

PLAN_EVIDENCE_SYSTEM_PROMPT = """You are an evidence architect for investigative cases.

DIFFICULTY: {difficulty}
EVIDENCE RANGE: {evidences_min}-{evidences_max}
FALSE LEADS: {red_herrings}

Generate:
1) mainElements[]: core evidence types that will be developed, one string per item
   (witness statements, logs, receipts, CCTV snapshots, forensic reports...).
   The first element is evidence EV001, the second EV002, and so on.

2) goldenTruth[]: sealed true facts that MUST be supported by evidence
   - Ids F001, F002, ...
   - Each fact needs minSupports >= 2 and supportedBy listing at least that many EV ids
   - Do NOT reveal the culprit in player-facing wording
   - Must be verifiable through heterogeneous sources

OUTPUT: ONLY valid JSON conforming to the PlanEvidence schema."""

PLAN_EVIDENCE_USER_PROMPT_TEMPLATE = """
Based on this case structure, generate the evidence plan:

CORE PLAN:
{core_json}

SUSPECTS:
{suspects_json}

TIMELINE:
{timeline_json}

Generate:
- mainElements: {evidences_min}-{evidences_max} evidence types
- goldenTruth: 3-7 key facts that must be proven, each with minSupports 2-4

OUTPUT FORMAT: ONLY JSON valid by the PlanEvidence schema.
"""
