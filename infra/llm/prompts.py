MATCH_SYSTEM_PROMPT = "You are an AI recruitment matching expert. Return only valid JSON."


MATCH_PROMPT = """
Analyze the match between this candidate and job posting.

CANDIDATE:
Name: {candidate_name}
Skills: {candidate_skills}
Experience: {candidate_years} years
Education: {candidate_education}

JOB POSTING:
Title: {job_title}
Description: {job_description}
Required Skills: {job_required_skills}
Experience Required: {job_experience_required} years

Scoring rules:
- Every score is an integer between 0 and 100.
- matchScore is the overall fit; 90 or above means a high-quality match.
- Base the breakdown only on the profiles above. Do NOT invent experience.

Return ONLY strict JSON:
{{
  "matchScore": <int 0-100>,
  "skillMatchScore": <int 0-100>,
  "cultureFitScore": <int 0-100>,
  "wellbeingMatchScore": <int 0-100>,
  "matchBreakdown": {{
    "strengths": ["..."],
    "gaps": ["..."],
    "recommendations": ["..."]
  }},
  "matchExplanation": "<brief explanation of the match>"
}}
"""
