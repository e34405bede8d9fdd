"""
Prompt builders for the AI proxy calls.
"""
from typing import Dict, List, Optional, Tuple


COMPETENCY_KEYWORDS = (
    ("Leadership & Team Management", ("lead", "manage", "team", "delegate", "motivate", "influence")),
    ("Communication & Interpersonal Skills", ("communicate", "present", "explain", "persuade", "conflict", "feedback")),
    ("Problem-Solving & Critical Thinking", ("problem", "challenge", "solve", "difficult", "overcome", "obstacle")),
    ("Adaptability & Learning", ("change", "adapt", "flexible", "learn", "new", "different")),
    ("Initiative & Innovation", ("initiative", "proactive", "improve", "innovate", "idea", "suggest")),
)
DEFAULT_COMPETENCY = "Professional Skills & Experience"

SCRAPE_EXTRACT_LIMIT = 12000


def detect_competency(question: str) -> str:
    """First competency whose keywords appear in the question."""
    lowered = question.lower()
    for competency, keywords in COMPETENCY_KEYWORDS:
        if any(keyword in lowered for keyword in keywords):
            return competency
    return DEFAULT_COMPETENCY


def _company_lines(company_name: Optional[str], company_description: Optional[str]) -> str:
    lines = []
    if company_name:
        lines.append(f"The company name is {company_name}.")
    if company_description:
        lines.append(f"About the company: {company_description}")
    return "\n".join(lines)


def questions_system_prompt(
    job_title: str,
    count: int,
    company_name: Optional[str] = None,
    company_description: Optional[str] = None,
) -> str:
    return f"""You are an experienced interviewer for a {job_title} position.
{_company_lines(company_name, company_description)}

Based on the job description and candidate's resume, generate {count} distinct behavioral interview questions.
Your response MUST be a JSON object with a "questions" field: an array of {count} strings.

Each question should:
1. Assess the candidate's past experiences relevant to this role
2. Help evaluate their soft skills and cultural fit
3. Follow the format of "Tell me about a time when..." or a similar open-ended behavioral question
4. Be specific enough to elicit a detailed STAR (Situation, Task, Action, Result) response
5. Explore a different aspect of the candidate's experience than the others"""


def questions_user_prompt(
    job_title: str,
    job_description: str,
    company_name: Optional[str] = None,
    resume_text: Optional[str] = None,
) -> str:
    parts = [f'Job Title: "{job_title}"', f'Job Description: "{job_description}"']
    if company_name:
        parts.append(f'Company Name: "{company_name}"')
    if resume_text:
        parts.append(f'Resume content: "{resume_text}"')
    return "\n".join(parts)


_FOCUS_BY_TYPE = {
    "technical": (
        "- Depth of technical knowledge\n- Clarity of explanation\n"
        "- Problem-solving approach\n- Relevant experience with technologies"
    ),
    "behavioral": (
        "- Structure\n- Specific examples that demonstrate relevant soft skills\n"
        "- Quantifiable results or impact\n- Self-reflection and learning\n"
        "- Relevance to the job requirements\n- Depth of experience\n"
        "- Challenges faced and solutions implemented"
    ),
}
_DEFAULT_FOCUS = "- Clarity and structure\n- Relevance to the question\n- Specific examples\n- Results and impact"


def feedback_system_prompt(
    question: str,
    question_type: Optional[str] = None,
    job_title: Optional[str] = None,
    company_name: Optional[str] = None,
    job_description: Optional[str] = None,
) -> str:
    competency = detect_competency(question)
    focus = _FOCUS_BY_TYPE.get(question_type or "", _DEFAULT_FOCUS)
    context = f"For a {job_title} position" if job_title else "For this position"
    if company_name:
        context += f" at {company_name}"
    if job_description:
        context += f', consider how well the answer aligns with these job requirements: """{job_description}"""'

    return f"""You are an expert interview coach specializing in providing constructive feedback on interview answers.

Analyze the candidate's response to the interview question and provide detailed feedback in JSON format with the following sections:

1. "pros" - An array of strings, each highlighting a specific strength in the answer
2. "cons" - An array of strings, each highlighting a specific, actionable weakness
3. "score" - A number between 1-100 representing the overall quality of the answer
4. "scoreBreakdown" - An object with numeric scores (1-100) for "structure", "clarity", "relevance", "specificity" and "professionalism"
5. "confidence" - A decimal between 0.0-1.0 representing your confidence in the analysis
6. "competencyFocus" - The primary competency being assessed
7. "suggestions" - A string with 2-3 specific suggestions to enhance this particular answer
8. "overall" - A string with an overall assessment of the response quality

For {question_type or 'interview'} questions, focus on:
{focus}

{context}

This question primarily assesses: {competency}

Make your feedback specific, actionable and balanced.
You must return valid JSON with all required fields. The competencyFocus should be set to: "{competency}\""""


def feedback_user_prompt(question: str, answer_text: str) -> str:
    return f'Question: """{question}"""\n\nAnswer: """{answer_text}"""'


def scrape_extraction_prompt(content: str) -> str:
    truncated = content[:SCRAPE_EXTRACT_LIMIT]
    if len(content) > SCRAPE_EXTRACT_LIMIT:
        truncated += " ...(truncated)"
    return f"""You are an expert at extracting structured job information from raw scraped web content.

Extract the job posting from the content below. It is markdown and may contain navigation, headers and footers; focus ONLY on the actual job posting.

RAW SCRAPED CONTENT:
---
{truncated}
---

Return ONLY valid JSON in this exact format:
{{
  "jobTitle": "exact job title from the posting",
  "companyName": "company name only",
  "jobDescription": "the complete requirements and responsibilities text, without navigation or footer content",
  "companyDescription": "brief company overview if available, otherwise empty string"
}}

Ignore navigation menus, "Apply now" buttons, social links, copyright text and breadcrumbs.
If no legitimate job posting is present, return {{"jobTitle": "", "companyName": "", "jobDescription": "", "companyDescription": ""}}."""


# -- question vault ----------------------------------------------------------

RESUME_EXPERIENCE_KEYWORDS = {
    "internships": ("intern", "internship", "co-op", "coop", "summer analyst", "trainee"),
    "leadership": ("president", "leader", "captain", "coordinator", "manager", "director", "head", "chair"),
    "projects": ("project", "developed", "built", "created", "designed", "implemented", "led team"),
    "technical_skills": ("python", "java", "javascript", "react", "sql", "git", "aws", "machine learning", "data analysis"),
    "achievements": ("award", "recognition", "scholarship", "dean's list", "honor", "achievement", "competition"),
    "teamwork": ("team", "collaborated", "group project", "cross-functional", "committee", "organization"),
}

REQUIRED_TOPICS = ("teamwork", "learning_agility", "initiative", "problem_solving")
PREFERRED_TOPICS = ("adaptability", "communication", "leadership")
MAX_QUESTIONS_PER_TOPIC = 2
VAULT_RESUME_LIMIT = 6000


def resume_experience_keywords(resume_text: Optional[str]) -> Dict[str, List[str]]:
    """Keywords found in the resume, grouped by category (empty groups dropped)."""
    if not resume_text:
        return {}
    lowered = resume_text.lower()
    found = {}
    for category, keywords in RESUME_EXPERIENCE_KEYWORDS.items():
        hits = [keyword for keyword in keywords if keyword in lowered]
        if hits:
            found[category] = hits
    return found


def vault_system_prompt(
    job_title: str,
    company_name: Optional[str] = None,
    company_description: Optional[str] = None,
    job_description: Optional[str] = None,
) -> str:
    lines = [f"You are an experienced interviewer for a {job_title} position."]
    if company_name:
        lines.append(f"The company name is {company_name}.")
    if company_description:
        lines.append(f'About the company: """{company_description}"""')
    if job_description:
        lines.append(f'About the job: """{job_description}"""')
    return "\n".join(lines)


def vault_user_prompt(
    count: int,
    company_name: Optional[str] = None,
    resume_text: Optional[str] = None,
    cover_letter_text: Optional[str] = None,
) -> str:
    parts = ["Candidate Documents and Context:"]
    if resume_text:
        parts.append(f'Resume content: "{resume_text[:VAULT_RESUME_LIMIT]}"')
    if cover_letter_text:
        parts.append(f'Cover Letter content: "{cover_letter_text[:VAULT_RESUME_LIMIT]}"')

    company = company_name or "the company"
    parts.append(f"""
Based on the provided information, generate {count} behavioral interview questions focused on teamwork, learning and project experience.
Prefer questions that have actually been asked by {company} for intern and entry-level roles; otherwise generate questions from the job description and candidate profile.
Questions must suit college students and new graduates with limited professional experience.

TOPIC DISTRIBUTION:
- MUST cover these competencies (at least 1 question each): {', '.join(REQUIRED_TOPICS)}
- PREFERRED coverage: {', '.join(PREFERRED_TOPICS)}
- Maximum {MAX_QUESTIONS_PER_TOPIC} questions per competency""")

    experiences = resume_experience_keywords(resume_text)
    if experiences:
        keywords = sorted({k for hits in experiences.values() for k in hits})
        parts.append(f"""
CANDIDATE EXPERIENCE CUSTOMIZATION:
- The resume mentions: {', '.join(keywords)}
- Leadership experiences: {', '.join(experiences.get('leadership', [])) or 'None identified'}
- Technical skills: {', '.join(experiences.get('technical_skills', [])) or 'None identified'}
- Project experience: {', '.join(experiences.get('projects', [])) or 'None identified'}
- Reference this background when writing model answers""")

    parts.append("""
Your response MUST be a JSON object in this format:
{
  "behavioralQuestions": [
    {
      "question": "string",
      "explanation": "why interviewers ask it",
      "modelAnswer": "string (STAR format)",
      "followUp": ["string"],
      "sourceAttribution": {"source": "ai-generated", "reliability": 2, "category": "ai_fallback"}
    }
  ]
}
Use standard sentence case with spaces between all words.""")
    return "\n".join(parts)


# -- guided answers ----------------------------------------------------------

GUIDED_RESUME_LIMIT = 2000

GUIDING_QUESTIONS_SYSTEM_PROMPT = (
    "You're an interview coach that helps candidates come up with personalized responses based on "
    "their resume and experience. Ask 5 follow-up questions to help them structure their answer, "
    "specifically referencing their background when relevant. Respond strictly in valid JSON format "
    "with a 'guidingQuestions' array."
)

DEFAULT_GUIDING_QUESTIONS = (
    "What specific experience can you highlight that's relevant to this question?",
    "How can you structure your answer using the STAR method?",
    "What key skills or qualities should you emphasize in your response?",
    "How can you quantify your achievements in this context?",
    "What makes your approach or perspective unique in this situation?",
)

_STRUCTURE_BY_TYPE = {
    "behavioral": "Consider using the STAR method: Situation, Task, Action, Result.",
    "technical": (
        "Structure your answer by: 1) Explaining your understanding of the concept, "
        "2) Discussing relevant experience, 3) Providing a concrete example."
    ),
    "experience": (
        "Focus on: 1) Relevant skills, 2) Specific accomplishments, 3) Lessons learned, "
        "4) How it applies to this role."
    ),
}
_DEFAULT_STRUCTURE = "Consider organizing your answer with a clear introduction, detailed examples, and a strong conclusion."


def structure_for(question_type: Optional[str]) -> str:
    return _STRUCTURE_BY_TYPE.get((question_type or "").lower(), _DEFAULT_STRUCTURE)


def _feedback_block(pros: List[str], cons: List[str], suggestions: Optional[str]) -> str:
    block = ""
    if pros:
        block += "STRENGTHS:\n" + "\n".join(f"- {p}" for p in pros) + "\n\n"
    if cons:
        block += "AREAS FOR IMPROVEMENT:\n" + "\n".join(f"- {c}" for c in cons) + "\n\n"
    if suggestions:
        block += f"IMPROVEMENT SUGGESTIONS:\n{suggestions}\n\n"
    return block


def guiding_questions_user_prompt(
    question_text: str,
    question_type: str,
    user_input: Optional[str] = None,
    resume_text: Optional[str] = None,
    feedback: Optional[Tuple[List[str], List[str], Optional[str]]] = None,
) -> str:
    prompt = (
        f'Interview Question ({question_type}): """{question_text}"""\n\n'
        f'User\'s current response: """{user_input or "No response yet"}"""\n\n'
    )
    if resume_text:
        prompt += (
            "Here is relevant information from the user's resume to help personalize your guidance:\n"
            f'"""{resume_text[:GUIDED_RESUME_LIMIT]}"""\n\n'
        )
    if feedback:
        prompt += "This is the feedback provided on the user's previous answer that should guide your questions:\n"
        prompt += _feedback_block(*feedback)
        prompt += (
            "Based on this feedback, tailor your guiding questions to help the user address their "
            "weaknesses and build on their strengths.\n\n"
        )
    prompt += (
        'Please provide 5 guiding questions in JSON format like: { "guidingQuestions": ["Q1", "Q2", ...] }. '
        "Make these questions specific to the user's background when possible."
    )
    return prompt


def refine_target_multiplier(has_previous_response: bool) -> float:
    return 1.3 if has_previous_response else 1.5


def refine_system_prompt(has_previous_response: bool, has_feedback: bool) -> str:
    percent = round(refine_target_multiplier(has_previous_response) * 100)
    prompt = f"""You are an interview coach helping a candidate improve their response to a behavioral question through incremental iterations.
Your goal is to make modest, focused improvements to the user's raw thoughts - NOT to create a complete polished answer yet.

Key guidelines:
1. Make small improvements that build on the user's exact ideas and wording
2. Maintain the user's voice, tone, and style
3. Focus on enhancing clarity, structure, and specificity
4. Add minimal professional polish without sounding artificial
5. Do NOT invent new details or examples that weren't in the original text
6. Keep your response proportional to the user's input length (approximately {percent}% of their word count)
7. Absolutely avoid creating complete STAR stories if the user hasn't provided all those elements
8. DO NOT begin your response with any introductory phrases like "Here's a response:" or "Sure!"
9. Return ONLY the enhanced response text with no additional commentary"""
    if has_feedback:
        prompt += """

The user has received specific feedback on their previous response:
1. PRESERVE and BUILD UPON the strengths identified
2. ADDRESS the weaknesses identified
3. Incorporate the user's new thoughts within this feedback framework"""
    if has_previous_response:
        prompt += (
            "\n\nThe user has submitted a previous response for this question. Consider it, but focus on "
            "improving the new thoughts they've shared. Don't change their story direction."
        )
    else:
        prompt += "\n\nThis is their first draft, so focus on modest improvements."
    return prompt


def refine_user_prompt(
    question_text: str,
    question_type: str,
    user_thoughts: str,
    previous_response: Optional[str] = None,
    feedback: Optional[Tuple[List[str], List[str], Optional[str]]] = None,
    max_words: Optional[int] = None,
) -> str:
    percent = round(refine_target_multiplier(bool(previous_response)) * 100)
    prompt = f"Interview Question ({question_type}): {question_text}\n\n"
    if previous_response:
        prompt += f"The user previously submitted this response:\nPREVIOUS RESPONSE:\n{previous_response}\n\n"
        if feedback:
            prompt += "This response received the following feedback:\n" + _feedback_block(*feedback)
        prompt += "They have now shared additional thoughts on how to improve their answer:"
    else:
        prompt += "The user has shared their initial thoughts on how to answer this question:"
    prompt += f"\n\nUSER'S THOUGHTS:\n{user_thoughts}\n\n"
    prompt += (
        f"Please help build {'an incrementally improved' if previous_response else 'a slightly enhanced'} "
        f"version of their response, approximately {percent}% the length of their input, keeping their tone "
        "and only what they explicitly mentioned. Return ONLY the enhanced answer with no other text."
    )
    if max_words:
        prompt += f" Stay under {max_words} words."
    return prompt
