"""Prompt builders for the interview orchestrator.

Thresholds quoted in prompts are advisory; the termination policy enforces them.
"""
from __future__ import annotations

from textwrap import dedent
from typing import Sequence

from interview_session.models import QATriple, Role, SessionRecord, Turn
from services.response_parser import COMPLETION_TOKEN

LEVEL_PROMPTS = {
    "Junior": "Focus on fundamental concepts, execution, and basic problem-solving. Questions should test their ability to perform core tasks and understand basic principles.",
    "Mid-Level": "Focus on autonomy, practical application, and problem-solving in real-world scenarios. Questions should cover handling edge cases, error management, and best practices.",
    "Senior": "Focus on architecture, strategy, scalability, and complex trade-offs. Questions should require deep understanding and ability to justify decisions and mentor others.",
    "Lead": "Focus on leadership, vision, strategic impact, and high-level design. Questions should cover team management, long-term planning, and balancing technical and business needs.",
}
AUTO_LEVEL_PROMPT = (
    "Analyze the job role and job description (if provided) to determine the appropriate interview level "
    "(Junior, Mid, Senior, Lead) and adapt your questions accordingly."
)


def _level_block(level: str) -> str:
    return LEVEL_PROMPTS.get(level, AUTO_LEVEL_PROMPT)


def _job_block(job_description: str) -> str:
    if not job_description.strip():
        return ""
    return f"JOB DESCRIPTION CONTEXT:\n{job_description.strip()}\n"


def render_history(turns: Sequence[Turn]) -> str:
    lines = []
    for turn in turns:
        speaker = "Interviewer" if turn.role == Role.INTERVIEWER else "Candidate"
        lines.append(f"{speaker}: {turn.text}")
    return "\n\n".join(lines)


def opening_prompt(resume_text: str, job_role: str, level: str, job_description: str = "") -> str:
    return dedent(
        """\
        You are a professional interviewer conducting a comprehensive interview for the role of {job_role}.

        LEVEL/CONTEXT INSTRUCTIONS:
        {level_block}

        {job_block}
        <resume>
        {resume}
        </resume>

        Target Role: {job_role}
        Target Level: {level}

        Start the interview naturally with a warm, conversational opening question about the candidate's background.
        Generate only the first interview question. Do not include any introduction or explanation, just the question itself.
        """
    ).format(
        job_role=job_role,
        level_block=_level_block(level),
        job_block=_job_block(job_description),
        resume=resume_text,
        level=level,
    )


def turn_prompt(record: SessionRecord, history: Sequence[Turn], *, min_questions: int, max_questions: int) -> str:
    count = record.question_count
    return dedent(
        """\
        You are a professional interviewer conducting a comprehensive, real-world interview for the role of {job_role}.

        LEVEL/CONTEXT INSTRUCTIONS:
        {level_block}

        {job_block}
        <resume>
        {resume}
        </resume>

        CONVERSATION SO FAR ({count} questions asked):
        <conversation_history>
        {conversation}
        </conversation_history>

        Guidelines:
        - Vary question types: theoretical, practical scenarios, behavioral questions.
        - Build on previous answers and dig deeper with follow-up questions.
        - Keep it conversational, like a real interview.

        The interview should naturally conclude between {min_q} and 20 questions and never exceed {max_q}.
        Emit {token} in place of the next question only when you have asked at least {min_q} questions
        and covered the candidate's experience, problem-solving and behavioral areas.

        Response format:
        FEEDBACK: [brief, constructive feedback on their last answer - 1-2 sentences]
        QUESTION: [next question or "{token}"]

        Questions asked so far: {count}
        """
    ).format(
        job_role=record.job_role,
        level_block=_level_block(record.level),
        job_block=_job_block(record.job_description),
        resume=record.resume_text or "Resume not available",
        count=count,
        conversation=render_history(history),
        min_q=min_questions,
        max_q=max_questions,
        token=COMPLETION_TOKEN,
    )


def summary_prompt(resume_text: str, triples: Sequence[QATriple]) -> str:
    conversation = "\n\n".join(f"Interviewer: {item.question}\nCandidate: {item.answer}" for item in triples)
    return dedent(
        """\
        You are an AI Interview Evaluator. Analyze this interview conversation and provide a thorough evaluation
        based strictly on the candidate's actual answers.

        - Do not give credit for resume skills that were not demonstrated in the conversation.
        - Short, vague or incomplete answers must score low (0-3/10).
        - If there is not enough data for an area, say "Insufficient data to assess".

        RESUME (context only):
        {resume}

        INTERVIEW CONVERSATION ({count} questions answered):
        {conversation}

        Return ONLY a JSON object with these fields:
        {{
          "overallScore": number (0-10),
          "strengths": [string],
          "weaknesses": [string],
          "summary": string,
          "recommendations": [string],
          "technicalDepth": number (0-10),
          "problemSolving": number (0-10),
          "communication": number (0-10),
          "experienceRelevance": number (0-10)
        }}
        """
    ).format(resume=resume_text or "Not available", count=len(triples), conversation=conversation)


def evaluation_prompt(question: str, answer: str) -> str:
    return dedent(
        """\
        You are a strict AI Interview Evaluator.

        Scoring rules:
        1. Scores should be 4-6/10 unless the answer is clearly excellent.
        2. Only give 8+ for answers that are detailed, specific, accurate and directly address the question.
        3. Vague or repetitive answers without concrete examples: max 3/10.
        4. If the answer only repeats the question, correctness should be 0-2/10.

        Return ONLY JSON, no markdown or text outside the braces:
        {{
          "correctness": number (0-10),
          "clarity": number (0-10),
          "confidence": number (0-10),
          "overall_feedback": "2-3 concise sentences of constructive feedback"
        }}

        Question: <question>{question}</question>
        Answer: <answer>{answer}</answer>
        """
    ).format(question=question, answer=answer)


def repair_prompt(text: str) -> str:
    return dedent(
        """\
        Convert the following text into valid JSON with numeric scores.
        Use fields: correctness, clarity, confidence (0-10), overall_feedback.
        Return only the JSON object.
        Text:
        {text}
        """
    ).format(text=text)
