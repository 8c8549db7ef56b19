from __future__ import annotations

RESUME_EXTRACTION_PROMPT = """
You are extracting structured facts from a resume.
Return strict JSON with keys:
- name: string
- email: string
- phone: string
- skills: string[]
- experience: string (short summary of work history)
- education: string (highest education)
- years_of_experience: number (estimated total years)
- keywords: string[] (the most searchable role keywords, most important first)

Resume text:
{resume_text}
""".strip()

COVER_LETTER_PROMPT = """
Write a professional cover letter for a job application.

Candidate:
- Name: {name}
- Email: {email}
- Skills: {skills}
- Experience: {experience}

Job:
- Position: {title}
- Company: {company}
- Description: {description}

The letter must show interest in the specific role and company, highlight the
relevant skills, stay under 350 words in 3-4 paragraphs, and start with
"Dear Hiring Manager,". Return only the letter text.
""".strip()

MATCH_SCORING_PROMPT = """
Score how well a candidate matches a job.

Candidate skills: {keywords}

Job description:
{posting_text}

Scoring criteria:
- exact technology/framework match: +40 per match
- related or compatible skill: +15 per match
- transferable skill (git, docker, databases, ...): +5 per match
- missing critical skill: -20 per missing skill
- clamp to 0..100

Recommendation rules:
- "Apply": score >= 70 and at most 2 missing critical skills
- "Maybe": score >= 40, or score >= 30 with at least 5 matching skills
- otherwise "Skip"

Return strict JSON with keys:
- score: integer
- matching_skills: string[]
- missing_skills: string[]
- recommendation: "Apply" | "Maybe" | "Skip"
- reasoning: string
""".strip()
