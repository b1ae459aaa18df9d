from __future__ import annotations

EVIDENCE_SYSTEM_PROMPT = "You extract discrete, factual evidence about a person. Return ONLY valid JSON."

RESUME_EVIDENCE_PROMPT = """
Extract discrete factual statements from this resume. Each item is one of:
- accomplishment: a single achievement, ideally with measurable impact (keep numbers and scale)
- skill_listed: one technology, tool or skill (split lists into separate items)
- trait_indicator: a trait or value the text demonstrates
- education: a degree with field, institution and year when present
- certification: a professional certification or license

Return strict JSON: {{"evidence": [{{"text": string, "type": string,
"context": {{"role": string|null, "company": string|null, "dates": string|null,
"institution": string|null, "year": string|null}}}}]}}

Resume:
{text}
""".strip()

STORY_EVIDENCE_PROMPT = """
Extract discrete factual evidence from this first-person story. Each item is one of:
accomplishment, skill_listed, trait_indicator, education, certification.
Prefer what the author did and demonstrated over background detail.

Return strict JSON: {{"evidence": [{{"text": string, "type": string,
"context": {{"role": string|null, "company": string|null, "dates": string|null, "year": string|null}}}}]}}

Story:
{text}
""".strip()

WORK_HISTORY_PROMPT = """
Extract every job, venture and notable additional role from this resume.
Return strict JSON: {{"jobs": [{{"company": string, "company_domain": string|null, "title": string,
"start_date": string, "end_date": string|null, "location": string|null, "summary": string|null,
"entry_type": "work"|"venture"|"additional"}}]}}
Use "Present" or null for end_date of current roles.

Resume:
{text}
""".strip()

RESUME_CONTACT_PROMPT = """
Extract the candidate's contact details from this resume header.
Return strict JSON: {{"name": string|null, "email": string|null, "phone": string|null,
"location": string|null, "linkedin": string|null, "github": string|null, "website": string|null}}

Resume:
{text}
""".strip()

POSTING_PROMPT = """
You are extracting structured details from a job posting.
Return strict JSON with keys:
- title: string
- company: string|null
- location: string|null
- employment_type: string|null
- requirements: {{"mustHave": [{{"text": string, "type": "education"|"certification"|"skill"|"experience"}}],
  "niceToHave": [same shape]}}
- responsibilities: string[]

Job posting:
{text}
""".strip()

SYNTHESIS_SYSTEM_PROMPT = (
    "You are an identity synthesizer. Decide whether each evidence item supports an existing claim "
    "or needs a new one. Return ONLY valid JSON."
)

SYNTHESIS_PROMPT = """
EXISTING CLAIMS:
{claims}

EVIDENCE ITEMS:
{evidence}

Rules:
1. If evidence clearly supports an existing claim, set "match" to that claim's exact label.
2. Otherwise create a new claim with a concise (2-4 words), reusable label.
3. strength: "strong" = direct evidence, "medium" = related, "weak" = tangential.
4. Respect the evidence type -> claim type mapping shown in parentheses.

Return strict JSON: {{"decisions": [{{"evidence_id": number, "match": string|null,
"strength": "weak"|"medium"|"strong", "new_claim": null or {{"type": string, "label": string,
"description": string}}}}]}} with exactly {count} decisions.
""".strip()

REFLECTION_PROMPT = """
Summarize this person's professional identity from their claims.
Only fill these fields: {fields}. Use null for any other field.
archetype must be exactly one of: {archetypes}.

Return strict JSON: {{"headline": string|null, "bio": string|null, "archetype": string|null,
"keywords": string[], "matches": string[]}}
"matches" are job titles this person would be a strong fit for.

Claims (highest confidence first):
{claims}
""".strip()

CLAIM_GROUNDING_PROMPT = """
For each claim, judge whether its supporting evidence actually backs it up.
Return strict JSON: {{"results": [{{"claim_id": number, "grounded": boolean,
"severity": "info"|"warning"|"error", "message": string}}]}}

Claims with evidence:
{claims}
""".strip()

TALKING_POINTS_PROMPT = """
Map the candidate's claims onto this job's requirements.
Return strict JSON: {{"strengths": [{{"requirement": string, "requirement_type": string, "claim_id": number|null,
"claim_label": string, "evidence_summary": string, "framing": string, "confidence": number}}],
"gaps": [{{"requirement": string, "requirement_type": string, "mitigation": string, "related_claims": string[]}}],
"inferences": [{{"inferred_claim": string, "derived_from": string[], "reasoning": string}}]}}
Never invent experience that the claims do not support.

Job: {title} at {company}
Requirements:
{requirements}

Claims with evidence:
{claims}
""".strip()

NARRATIVE_PROMPT = """
Write a short first-person narrative (2-3 paragraphs) positioning the candidate for this role.
Use only the strengths and inferences below; address the gaps honestly if at all.
Return plain text only.

Job: {title} at {company}
Talking points JSON:
{talking_points}
""".strip()

RESUME_PROMPT = """
Build a tailored resume for this role from the candidate's real work history and claims.
Do not invent employers, titles, dates or metrics.
Return strict JSON: {{"summary": string, "skills": string[], "experience": [{{"work_history_id": number|null,
"company": string, "title": string, "dates": string, "location": string|null, "bullets": string[]}}],
"education": [{{"institution": string, "degree": string, "year": string|null}}]}}

Job: {title} at {company}
Requirements:
{requirements}

Work history:
{work_history}

Claims:
{claims}

Talking points JSON:
{talking_points}
""".strip()

TAILORING_EVAL_PROMPT = """
You audit a tailored application for claims that the candidate's profile does not support.
Return strict JSON: {{"grounding": {{"passed": boolean, "hallucinations": [{{"text": string, "issue": string}}]}},
"utilization": {{"missed": [{{"requirement": string, "matching_claim": string}}]}},
"gaps": [{{"requirement": string, "note": string}}]}}

Known claims:
{claims}

Job requirements:
{requirements}

Narrative:
{narrative}

Resume JSON:
{resume}
""".strip()

COMPANY_RESEARCH_PROMPT = """
Give a brief, factual research note on this company for a candidate applying to the role below.
Return strict JSON: {{"overview": string, "culture": string, "recent_news": string[], "interview_tips": string[]}}

Company: {company}
Role: {title}
Posting excerpt:
{description}
""".strip()
