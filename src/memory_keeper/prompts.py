"""
Prompts for the optional LLM collaborators.

Used by the API quality scorer and the consolidation merge synthesizer.
"""

QUALITY_SCORING_SYSTEM_PROMPT = (
    "You are a quality scorer for development memories. Respond only with valid JSON."
)

QUALITY_SCORING_PROMPT = '''Rate the quality of this development memory on a scale of 0 to 1.

Memory content:
"""
{content}
"""

Evaluate these factors (each 0-1):
- specificity: How specific and actionable is the content?
- clarity: How clear and well-written is it?
- relevance: How relevant is this to software development?
- uniqueness: How unique/non-obvious is this insight?

Respond with JSON only:
{{
  "score": <overall 0-1>,
  "confidence": <your confidence 0-1>,
  "factors": {{
    "specificity": <0-1>,
    "clarity": <0-1>,
    "relevance": <0-1>,
    "uniqueness": <0-1>
  }}
}}'''


MERGE_SYSTEM_PROMPT = (
    "You merge overlapping notes from a software project's memory into one note. "
    "Respond with the merged note text only."
)

MERGE_PROMPT = '''These two memories describe overlapping facts. Combine them into a single memory.

Memory A:
"""
{content_a}
"""

Memory B:
"""
{content_b}
"""

Rules:
- Keep every concrete detail from both: file paths, numbers, names, code
- Remove repeated information
- If they disagree, keep both statements and say which is newer (B is newer than A)
- Do not add facts that appear in neither memory
- Plain text, no preamble, no markdown headings

Merged memory:'''
