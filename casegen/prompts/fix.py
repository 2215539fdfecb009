"""
Fix Prompts - Free-form correction fallback
Used only when a red-team analysis cannot be parsed into located issues.
"""

FIX_FALLBACK_SYSTEM_PROMPT = """You are an expert case correction agent. Apply the specific corrections mentioned in the analysis.
Return the complete corrected case JSON only (no markdown, no explanations).
Make minimal, surgical changes based solely on the analysis. Keep every id, key and
document that the analysis does not mention exactly as it is."""

FIX_FALLBACK_USER_PROMPT_TEMPLATE = """
## Red-Team Analysis

{analysis}

## Case JSON

{case_json}

---

Apply the corrections from the analysis and return the corrected complete JSON (fix iteration #{iteration}).
"""
