"""
Generate Prompts - Document Bodies and Forensic Image Prompts
"""

# =============================================================================
# Documents
# =============================================================================

DOCUMENT_TYPE_DIRECTIVES = {
    "police_report": """FORMAT (Markdown inside each section's content):
- Header: Report Number, Date/Time (ISO-8601 with offset), Unit / Responsible Officer
- Objective incident summary; bullet lists when appropriate
MINIMUM ANCHORS: cite >= 2 real evidence IDs and/or concrete timeline events. Do not infer guilt.""",
    "interview": """FORMAT (Markdown inside each section's content):
- Clean transcript, lines labelled **Interviewer:** / **Interviewee:**
- Optional bracketed timestamps when natural (e.g. [00:05])
MINIMUM ANCHORS: reference >= 1 real evidence ID or timeline event relevant to the statements.""",
    "witness_statement": """FORMAT (Markdown inside each section's content):
- First-person statement, objective, no speculation about the perpetrator
- Date/Time (ISO-8601 with offset) and brief fictional identification
MINIMUM ANCHORS: reference >= 1 real evidence ID or timeline event corroborating the statement.""",
    "forensics_report": """FORMAT (Markdown inside each section's content):
- Header: Laboratory / Examiner / Date / Time (ISO-8601 with offset)
- Methodology, Results, Interpretation / Limitations
- Chain of Custody (mandatory) with ISO-8601 timestamps and ordered handoffs
MINIMUM ANCHORS: cite >= 2 real evidence IDs.""",
    "evidence_log": """FORMAT (Markdown inside each section's content):
- Table: ItemId | Collected At | Collected By | Description | Storage | Transfers
MINIMUM ANCHORS: every line corresponds to a real evidence ID (no new items).""",
    "memo_admin": """FORMAT (Markdown inside each section's content):
- Header: To / From / Subject / Date; concise bureaucratic tone; bullets for action items
MINIMUM ANCHORS: cite >= 1 real document or evidence ID when appropriate.""",
}

GENERATE_DOCUMENT_SYSTEM_PROMPT = """You are a police / forensic technical writer. Generate ONLY JSON containing the document body.

GENERAL RULES (MANDATORY):
- Write all text in English
- Never reveal the solution or culprit
- Use EXACTLY the provided section titles in the exact order. Do NOT add or rename sections
- Stay within the word count range (lengthTarget)
- Whenever citing evidence, reference existing evidence IDs; do not invent
- Do not mention gating in the content (gating is game metadata)
- No real PII, brands or real addresses

TEMPORAL CONSISTENCY (CRITICAL):
- ALL timestamps use ISO-8601 with the case timezone offset
- createdAt MUST equal the dateCreated of the specification
- Referenced times must be consistent with the established timeline

OUTPUT: ONLY valid JSON conforming to the GeneratedDocument schema
(docId, type, title, createdAt, sections as a list of objects with title and content)."""

GENERATE_DOCUMENT_USER_PROMPT_TEMPLATE = """
## Document To Generate
- docId: {doc_id}
- type: {doc_type}
- title: {title}
- dateCreated: {date_created}
- sections (order): {sections}
- lengthTarget: {length_min}-{length_max} words

## Type Directives
{type_directives}

## {difficulty_directive}

## Design Context
{context_json}

---

Self-check before answering: every cited ID exists in the context, section titles match exactly and in order,
timestamps are ISO-8601 with offset.
"""

# =============================================================================
# Media
# =============================================================================

GENERATE_IMAGE_PROMPT_SYSTEM_PROMPT = """You are a forensic photographer writing prompts for an image generator.

Turn a media specification into ONE detailed, photographic image prompt:
- Describe composition, camera position, lens, lighting and the exact subjects visible
- Respect every constraint (lighting, perspective, scale, quality, colorMode, annotation)
- Realistic documentary style; no text overlays unless the kind is document_scan or diagram
- Never depict violence graphically; no real people, brands or addresses

OUTPUT: ONLY valid JSON conforming to the ImagePrompt schema (imagePrompt, negativePrompt, camera)."""

GENERATE_IMAGE_PROMPT_USER_PROMPT_TEMPLATE = """
## Media Specification
{spec_json}

## Canonical Appearance Of Referenced Subjects
{reference_descriptions}

---

Write the image prompt now.
"""

REFERENCE_ANCHOR_INSTRUCTION = """Keep every referenced subject visually identical to the supplied reference image
(shape, materials, colours, marks). Only the scene, angle and lighting change."""
