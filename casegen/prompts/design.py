"""
Design Prompts - Document and Media Specifications
One call per document type and per media kind, each with type-specific rules.
"""

# =============================================================================
# Document Specs
# =============================================================================

DOCUMENT_TYPE_RULES = {
    "police_report": """- Include Report Number, Officer details, Date/Time
- Sections: Incident Summary, Scene Description, Evidence Collected, Witness Statements, Actions Taken
- lengthTarget: [300, 600]
- Reference at least 2 evidence IDs and 2 timeline events
- Objective tone, no speculation about guilt""",
    "interview": """- Format as a Q&A transcript with Interviewer/Interviewee labels
- Sections: Introduction, Background Questions, Incident Questions, Alibi Verification, Closing
- lengthTarget: [400, 800]
- subjectId MUST be a suspect ID from the context; one interview per relevant suspect
- Reference at least 1 evidence ID or timeline event relevant to the subject""",
    "witness_statement": """- Written statement in first person from the witness perspective
- Sections: Witness Information, Account of Events, Additional Information, Signature Block
- lengthTarget: [300, 600]
- subjectId must match the person giving the statement
- Reference the timeline events witnessed by this person""",
    "forensics_report": """- Include Laboratory ID, Examiner details, Date/Time
- Sections: Evidence Description, Methodology, Results, Interpretation, Chain of Custody, Limitations
- The "Chain of Custody" section is MANDATORY and lists the temporal sequence of evidence handling
- lengthTarget: [400, 800]
- Reference at least 2 evidence IDs""",
    "evidence_log": """- Cataloging format with structured entries
- Sections: Log Header, Evidence Entries, Summary
- lengthTarget: [250, 500]
- List all major evidence items with collection timestamps consistent with the timeline""",
    "memo_admin": """- Bureaucratic memo with To/From/Subject/Date header
- Sections typically: Purpose, Summary, Action Items, Attachments
- lengthTarget: [200, 400]
- Reference document/evidence IDs when discussing case progression; neutral tone""",
}

DESIGN_DOCUMENTS_SYSTEM_PROMPT = """You are an investigative case designer specializing in {doc_type} documents.

TASK: Create a detailed specification for ONE OR MORE {doc_type} document(s) based on the provided context.

Each specification has:
- docId: "doc_{doc_type}_<nnn>" (unique)
- type: "{doc_type}"
- title, dateCreated (ISO-8601 with the case timezone offset), sections (titles, in order)
- lengthTarget: [min, max] word counts, min >= 10
- gated, gatingRule (only when gated; needs an "action" such as "submit_evidence")
- subjectId (interviews/witness statements), evidenceReferences (EV ids), timelineReferences (E ids)

CRITICAL RULES:
- All text in English
- dateCreated must be chronologically consistent with the case timeline
- Gated documents allowed at this difficulty: {gated_documents}
- Evidence/timeline/subject references must match IDs in the loaded context exactly
- Do not reveal the solution or final guilt determination

DOCUMENT TYPE SPECIFIC RULES:
{type_rules}

OUTPUT: ONLY valid JSON conforming to the DesignDocuments schema."""

DESIGN_DOCUMENTS_USER_PROMPT_TEMPLATE = """
Design {doc_type} specification(s) for this case.

DIFFICULTY: {difficulty}
TIMEZONE: {timezone}

VALID SUSPECT IDS: {suspect_ids}
VALID EVIDENCE IDS: {evidence_ids}
VALID EVENT IDS: {event_ids}

LOADED CONTEXTS:
{context_json}

Generate the specification now.
"""

# =============================================================================
# Media Specs
# =============================================================================

MEDIA_KIND_RULES = {
    "crime_scene_photo": """- Multiple angles: overview, mid-range, close-ups
- List every visible evidence item in relatedEvidenceIds
- constraints: lighting "forensic flash", perspective "eye-level" or "overhead", quality "forensic-quality"
- Prompt describes room layout, visible evidence, lighting conditions and disturbances""",
    "surveillance_photo": """- Security-camera still: elevated angle, timestamp overlay, lower resolution
- constraints: quality "security-camera", perspective "overhead"
- collectedAt must match the timeline event the frame captures""",
    "mugshot": """- One per suspect who is booked; frontal and profile framing, neutral gray background
- constraints: lighting "even frontal", quality "professional"
- Appearance must match the suspect description exactly""",
    "evidence_photo": """- One per significant physical evidence item, with a forensic scale ruler
- constraints: lighting "forensic flash", perspective "close-up", scale true""",
    "forensic_photo": """- Close-ups of critical evidence details (prints, fibres, residues)
- constraints: lighting "raking light" or "forensic flash", quality "forensic-quality", annotation allowed""",
    "document_scan": """- One per paper document or record mentioned in the context
- constraints: perspective "overhead", colorMode "color", quality "professional"
- Prompt describes paper type, handwriting/print, stamps and stains""",
    "diagram": """- 1-2 diagrams: scene layout, timeline diagram or relationship map
- constraints: colorMode "color", annotation true
- Prompt describes the elements, labels and layout""",
}

DESIGN_MEDIA_SYSTEM_PROMPT = """You are a forensic media specialist designing specifications for {media_kind} generation.

TASK: Create detailed specifications for ONE OR MORE {media_kind} items based on the provided context.

Each specification has:
- evidenceId: "ev_{media_kind}_<nnn>" (unique)
- kind: "{media_kind}"
- title, collectedAt (ISO-8601 with the case timezone offset)
- prompt: detailed visual description for image generation
- constraints: lighting, perspective, scale, quality, colorMode, annotation
- deferred: true only for media the pipeline cannot render (audio/video)
- relatedEvidenceIds: planned EV ids shown in the image
- visualReferenceIds: registry reference ids for recurring subjects shown in the image

CRITICAL RULES:
- All text in English
- collectedAt must be realistic: not before the incident, within the investigation window
- Evidence characteristics and subject appearances must match the context exactly

VISUAL CONSISTENCY:
{visual_references}

MEDIA KIND SPECIFIC RULES:
{kind_rules}

OUTPUT: ONLY valid JSON conforming to the DesignMedia schema."""

DESIGN_MEDIA_NO_REFERENCES = """- No visual references are available for this case
- Leave visualReferenceIds empty"""

DESIGN_MEDIA_REFERENCES_TEMPLATE = """- When an image shows a subject with a reference, list its id in visualReferenceIds
- Reference IDs MUST match exactly one of the ids below; never invent ids

AVAILABLE VISUAL REFERENCES:
{reference_lines}"""

DESIGN_MEDIA_USER_PROMPT_TEMPLATE = """
Design {media_kind} specification(s) for this case.

DIFFICULTY: {difficulty}
TIMEZONE: {timezone}

VALID EVIDENCE IDS: {evidence_ids}
VALID SUSPECT IDS: {suspect_ids}

LOADED CONTEXTS:
{context_json}

Generate the specification now.
"""
