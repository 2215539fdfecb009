"""
Expand Prompts - Suspect, Evidence and Timeline Expansion
Plus the relationship synthesis over everything the plan and expansion produced.
"""

# =============================================================================
# Expand Suspect
# =============================================================================

EXPAND_SUSPECT_SYSTEM_PROMPT = """You are an expert in developing detailed suspect profiles for investigative cases.

DIFFICULTY: {difficulty}
COMPLEXITY FACTORS: {complexity_factors}

Expand this suspect's profile with rich, investigatively-relevant details:
- Background: occupation, history, personality traits, past events
- Motive: detailed potential reasons for involvement
- Alibi: specific times, locations, corroborating factors
- Behavior: demeanor, cooperation level, inconsistencies
- Relationships: connections to other suspects, by suspect ID

IMPORTANT:
- Keep the EXACT suspectId and name from the plan
- Do NOT reveal whether this is the culprit
- Only reference suspect IDs that exist in the plan

OUTPUT: ONLY valid JSON conforming to the ExpandSuspect schema."""

EXPAND_SUSPECT_USER_PROMPT_TEMPLATE = """
Expand the profile for this suspect:

CASE CONTEXT:
{core_json}

SUSPECT (from plan):
- suspectId: {suspect_id}
- name: {name}
- role: {role}
- initial motive: {initial_motive}

OTHER SUSPECT IDS: {other_suspect_ids}

OUTPUT FORMAT: ONLY JSON valid by the ExpandSuspect schema.
"""

# =============================================================================
# Expand Evidence
# =============================================================================

EXPAND_EVIDENCE_SYSTEM_PROMPT = """You are an expert case designer creating detailed evidence for a {difficulty}-level detective case.

COMPLEXITY FACTORS: {complexity_factors}

Create a comprehensive expansion for evidence item {evidence_id} (type: {element_type}).

REQUIREMENTS:
1. Discovery context: where, when and by whom it was found
2. Complete chain of custody with realistic ISO-8601 timestamps (with offset)
3. Forensic notes if appropriate for the evidence type
4. Links to suspects (S001...), events (E001...) and golden truth facts (F001...) by ID
5. Do NOT reveal the solution directly

OUTPUT: ONLY valid JSON conforming to the ExpandEvidence schema."""

EXPAND_EVIDENCE_USER_PROMPT_TEMPLATE = """
Expand this evidence item:

CASE CONTEXT:
{core_json}

EVIDENCE TO EXPAND:
- evidenceId: {evidence_id}
- elementType: {element_type}

VALID SUSPECT IDS: {suspect_ids}
VALID EVENT IDS: {event_ids}

GOLDEN TRUTH FACTS (for reference):
{facts_json}

OUTPUT FORMAT: ONLY JSON valid by the ExpandEvidence schema.
"""

# =============================================================================
# Expand Timeline
# =============================================================================

EXPAND_TIMELINE_SYSTEM_PROMPT = """You are an expert case designer expanding the macro timeline of a {difficulty}-level detective case.

COMPLEXITY FACTORS: {complexity_factors}

For every planned event provide:
- A detailed description of what happened
- Witness accounts: what witnesses claim to have seen or heard
- Contradictions between accounts, appropriate to the difficulty
- Significance for the investigation

IMPORTANT:
- Keep the EXACT event IDs and timestamps from the plan; add no events and drop none
- Use only suspect IDs from the plan
- Do NOT reveal the solution directly

OUTPUT: ONLY valid JSON conforming to the ExpandTimeline schema."""

EXPAND_TIMELINE_USER_PROMPT_TEMPLATE = """
Expand the timeline for this case:

CASE CONTEXT:
{core_json}

TIMELINE TO EXPAND:
{timeline_json}

SUSPECTS (for cross-reference):
{suspects_json}

OUTPUT FORMAT: ONLY JSON valid by the ExpandTimeline schema.
"""

# =============================================================================
# Relationship Synthesis
# =============================================================================

SYNTHESIZE_RELATIONS_SYSTEM_PROMPT = """You are an expert case designer synthesizing every relationship in a {difficulty}-level detective case.

Synthesize:
1. SUSPECT RELATIONS: connections between suspects (colleague, friend, rival, family, alibi_for...)
2. EVIDENCE LINKS: for each evidence ID, the suspects, events and facts it connects to
3. EVENT LINKS: causal, temporal or logical links between events
4. CONTRADICTION MATRIX: contradictions across witness accounts, alibis, timeline and evidence
5. ALIBI NETWORK: for each suspect, who or what corroborates the alibi and its status
   (corroborated, contradicted, unverified)

IMPORTANT:
- Use only the exact IDs listed in the context (S001, EV001, E001, F001)
- Do NOT reveal the solution directly

OUTPUT: ONLY valid JSON conforming to the RelationshipSynthesis schema."""

SYNTHESIZE_RELATIONS_USER_PROMPT_TEMPLATE = """
Synthesize the relationships for this case:

CASE CONTEXT:
{core_json}

SUSPECTS:
{suspects_json}

EVIDENCE IDS: {evidence_ids}

EXPANDED TIMELINE:
{timeline_json}

GOLDEN TRUTH FACTS:
{facts_json}

OUTPUT FORMAT: ONLY JSON valid by the RelationshipSynthesis schema.
"""
