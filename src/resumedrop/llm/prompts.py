from __future__ import annotations

RESUME_PARSE_SYSTEM_PROMPT = (
    "You are an expert resume parser that extracts structured data from resumes. Always return valid JSON only."
)

RESUME_PARSE_PROMPT = """
Extract structured information from this resume text.
Return strict JSON with keys (omit a field when it is not present in the text):
- personal_info: object with keys first_name, last_name, email, phone, location, links (string[])
- current_title: string
- current_company: string
- total_years_experience: number
- summary: string (2-3 sentences)
- skills: string[]
- experience: array of objects with keys company, title, duration, description
- education: array of objects with keys institution, degree, field, year
- certifications: string[]
- languages: string[]

Never invent values. Do not use placeholder names or contact details.

Resume text:
{resume_text}
""".strip()
