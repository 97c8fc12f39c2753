"""LLM prompt templates for pipeline stages."""

# Common instruction to suppress thinking and ensure JSON-only output
# Note: curly braces must be escaped as {{ }} for LangChain templates
JSON_ONLY_INSTRUCTION = """
CRITICAL: You MUST respond with ONLY valid JSON.
- Do NOT include any thinking, reasoning, or explanation.
- Do NOT use markdown code blocks.
- Start your response directly with the opening bracket
- No text before or after the JSON."""

QUESTION_SCHEMA_HINT = """{{
    "number": 1,
    "stem": "Full question statement, verbatim",
    "option_a": "Full text of alternative A",
    "option_b": "Full text of alternative B",
    "option_c": "Full text of alternative C",
    "option_d": "Full text of alternative D",
    "option_e": "Full text of alternative E, or null when the question has only four",
    "correct_option": "A|B|C|D|E or null when the answer key is not in the text",
    "area": "Cirurgia|Clínica Médica|GO|Pediatria|Medicina Preventiva|Todas as áreas",
    "subarea": "Specific sub-area or null",
    "topic": "Specific topic or null",
    "explanation": "Commented answer if present in the text, otherwise null"
  }}"""

STRUCTURING_SYSTEM_PROMPT = """You are an expert at extracting multiple-choice questions from Brazilian medical residency exam papers. The text was extracted from a PDF and may contain page headers, footers, and broken lines.

EXTRACTION RULES:
1. Extract EVERY multiple-choice question present in the text, in order
2. Copy the stem and the alternatives verbatim, in the original language (usually Portuguese)
3. Re-join lines broken by the PDF extraction, but never rewrite or summarise content
4. Questions have four mandatory alternatives (A-D) and an optional fifth (E)
5. Only fill correct_option if the answer key is explicitly present in the text
6. Skip questions that are cut off at the start or end of the text
7. Never invent questions, alternatives, or answer keys
8. If you cannot classify the area, use "Todas as áreas"
""" + JSON_ONLY_INSTRUCTION

STRUCTURING_USER_PROMPT = """Extract all multiple-choice questions from this exam text.

EXAM TEXT (part {chunk_index} of {total_chunks}):
---
{chunk_text}
---

Respond with ONLY a JSON array where each element has this structure (no other text):
[
  """ + QUESTION_SCHEMA_HINT + """
]"""

RANGE_STRUCTURING_USER_PROMPT = """Extract ONLY questions {start} to {end} from this exam text.
If a question in that range does not exist, skip it. Return an empty array if none exist.

EXAM TEXT:
---
{text}
---

Respond with ONLY a JSON array where each element has this structure (no other text):
[
  """ + QUESTION_SCHEMA_HINT + """
]"""

QUESTION_COUNT_PROMPT = """How many multiple-choice questions exist in this exam text? Answer with the number only.

EXAM TEXT:
---
{text}
---"""

REPAIR_SYSTEM_PROMPT = """You fix defective multiple-choice questions from Brazilian medical residency exams. Focus on making EVERY alternative completely different from the others.

POSSIBLE PROBLEMS:
- STEM_TRUNCATED: The stem starts in the middle of a sentence. Rebuild the complete stem using the document context and the alternatives as hints.
- STEM_TOO_SHORT: The stem is too short. Expand it with adequate clinical context.
- ALTERNATIVES_SIMILAR: Two or more alternatives share more than 80% of their text. Rewrite them so they are clearly different.
  BAD: "ressonância magnética com gadolínio para caracterização" vs "ressonância magnética com gadolínio para melhor caracterização"
  GOOD: "ressonância magnética com gadolínio" vs "tomografia computadorizada com contraste" vs "ultrassonografia abdominal"
- ALTERNATIVES_MISSING: Some alternatives are empty. Write plausible medical alternatives.

CRITICAL RULES:
- Preserve the answer key: the alternative at correct_option must keep its correct medical meaning.
- The stem must ALWAYS start with a capital letter.
- Alternatives must be pairwise distinct, using different vocabulary and concepts.
- Keep the original language (Portuguese).
""" + JSON_ONLY_INSTRUCTION

REPAIR_USER_PROMPT = """Fix the questions below.

DOCUMENT CONTEXT (original PDF text, may be empty):
---
{context}
---

QUESTIONS TO FIX:
{questions_json}

Respond with ONLY this JSON (no other text). Use the same "index" as the input item:
{{
  "fixed_questions": [
    {{
      "index": 0,
      "stem": "Complete fixed stem",
      "option_a": "Alternative A",
      "option_b": "Alternative B",
      "option_c": "Alternative C",
      "option_d": "Alternative D",
      "option_e": "Alternative E or null",
      "explanation": "Explanation or null",
      "area": "Medical area"
    }}
  ]
}}"""

ANSWER_KEY_SYSTEM_PROMPT = """You are a medical specialist who answers Brazilian medical residency exam questions.

For each question, choose the ONE correct alternative and answer with its letter.

RULES:
- Answer only with a letter that has an alternative in the question (E only when option_e is present).
- Do not change, rewrite, or comment on the questions.
- If you cannot decide, answer null for that item.
""" + JSON_ONLY_INSTRUCTION

ANSWER_KEY_USER_PROMPT = """Determine the correct alternative of each question below.

QUESTIONS:
{questions_json}

Respond with ONLY this JSON (no other text). Use the same "index" as the input item:
{{
  "answers": [
    {{"index": 0, "correct_option": "A|B|C|D|E or null"}}
  ]
}}"""
