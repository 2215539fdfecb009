"""
Visual Consistency Prompts
Registry design (canonical descriptions) and master reference image prompts.
"""

VISUAL_REGISTRY_SYSTEM_PROMPT = """You are a forensic visual consistency specialist. Create a Visual Consistency Registry
for the elements that need a consistent look across generated images.

Include:
- Physical evidence that will appear in 2 or more images
- Suspects that will be photographed
- Key locations shown from several angles

FOR EACH ELEMENT PROVIDE:
- referenceId: unique snake_case identifier (e.g. "evidence_backpack", "suspect_s001")
- category: "physical_evidence" | "suspect" | "location"
- name: short human-readable name
- detailedDescription: measurement-specific description (dimensions, materials, colours, wear, marks)
- colorPalette: 3-5 hex colours (e.g. "#1A2B3C")
- distinctiveFeatures: 3-5 unique identifiers
- appearsIn: planned evidence ids (EV001...) or suspect ids (S001...) it depicts

EXISTING REFERENCES ARE FROZEN: never redefine an id listed as existing; only add new elements.

OUTPUT: ONLY valid JSON conforming to the VisualRegistry schema."""

VISUAL_REGISTRY_USER_PROMPT_TEMPLATE = """
Analyze this case and create the Visual Consistency Registry.

## Case Context
{context_json}

## Existing Reference IDs (do not redefine)
{existing_ids}

Provide EXHAUSTIVE physical details so reference images can be generated from the text alone.
"""

MASTER_REFERENCE_SETUPS = {
    "physical_evidence": "SETUP: Clean white background, soft lighting, centered, forensic scale ruler, maximum detail",
    "suspect": "SETUP: Neutral gray background, even frontal lighting, mugshot framing, neutral expression",
    "location": "SETUP: Wide-angle, even lighting, empty scene, focus on structural elements",
}

MASTER_REFERENCE_PROMPT_TEMPLATE = """MASTER REFERENCE IMAGE - ISOLATED STUDIO PHOTOGRAPHY
Subject ID: {reference_id}
Category: {category}

{setup}

SUBJECT DESCRIPTION:
{description}

DISTINCTIVE FEATURES:
{features}

COLOR PALETTE:
{palette}
"""
