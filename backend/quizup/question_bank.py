from __future__ import annotations

import json
import logging
import re
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

from pydantic import BaseModel, Field

from .gemini_client import GeminiClient
from .settings import settings


logger = logging.getLogger(__name__)

OPTIONS_PER_QUESTION = 4

GUIDANCE_UNAVAILABLE = "AI guidance not available."
GUIDANCE_FAILED = (
    "Unable to generate personalized guidance at this time. "
    "Review the questions you missed and consider studying those topics more."
)


class GeneratedQuestion(BaseModel):
    content: str
    options: List[str] = Field(min_length=OPTIONS_PER_QUESTION, max_length=OPTIONS_PER_QUESTION)
    correct_answer: str
    explanation: str = ""


def _q(content: str, options: List[str], correct: str, explanation: str) -> GeneratedQuestion:
    return GeneratedQuestion(content=content, options=options, correct_answer=correct, explanation=explanation)


FALLBACK_QUESTIONS: Dict[str, List[GeneratedQuestion]] = {
    "Mathematics": [
        _q("What is 2 + 2?", ["3", "4", "5", "6"], "4", "Basic addition: 2 + 2 = 4"),
        _q("What is the square root of 16?", ["2", "4", "6", "8"], "4", "4 × 4 = 16, so the square root of 16 is 4"),
        _q("What is 10 × 5?", ["15", "25", "50", "100"], "50", "10 multiplied by 5 equals 50"),
        _q("What is 100 ÷ 4?", ["20", "25", "30", "40"], "25", "100 divided by 4 equals 25"),
        _q("What is the value of π (pi) to two decimal places?", ["3.12", "3.14", "3.16", "3.18"], "3.14", "π is approximately 3.14159..."),
    ],
    "Physics": [
        _q("What is the SI unit of force?", ["Newton", "Joule", "Watt", "Pascal"], "Newton", "Force is measured in Newtons (N)"),
        _q("What is the acceleration due to gravity on Earth?", ["9.8 m/s²", "10 m/s²", "8.9 m/s²", "11 m/s²"], "9.8 m/s²", "Standard gravity on Earth is 9.8 m/s²"),
        _q("What is the unit of electric current?", ["Volt", "Ampere", "Ohm", "Watt"], "Ampere", "Electric current is measured in amperes (A)"),
        _q(
            "What is the first law of thermodynamics?",
            [
                "Energy cannot be created or destroyed",
                "Entropy always increases",
                "Heat flows from hot to cold",
                "Pressure and volume are inversely proportional",
            ],
            "Energy cannot be created or destroyed",
            "The first law states that energy is conserved in a closed system",
        ),
    ],
    "Chemistry": [
        _q("What is the chemical symbol for water?", ["H2O", "CO2", "O2", "H2"], "H2O", "Water is composed of two hydrogen atoms and one oxygen atom"),
        _q("What is the pH of pure water?", ["5", "6", "7", "8"], "7", "Pure water is neutral with a pH of 7"),
        _q("What is the atomic number of carbon?", ["4", "6", "8", "12"], "6", "Carbon has 6 protons in its nucleus"),
        _q("What is the most abundant gas in Earth's atmosphere?", ["Oxygen", "Carbon Dioxide", "Nitrogen", "Argon"], "Nitrogen", "Nitrogen makes up about 78% of Earth's atmosphere"),
    ],
    "Biology": [
        _q("What is the powerhouse of the cell?", ["Nucleus", "Mitochondria", "Ribosome", "Golgi Apparatus"], "Mitochondria", "Mitochondria produce energy for the cell"),
        _q("What is the process by which plants make food?", ["Respiration", "Photosynthesis", "Transpiration", "Digestion"], "Photosynthesis", "Plants use sunlight to convert carbon dioxide and water into glucose"),
        _q("What is the basic unit of life?", ["Atom", "Molecule", "Cell", "Tissue"], "Cell", "All living organisms are made up of cells"),
        _q("What is the largest organ in the human body?", ["Liver", "Brain", "Skin", "Heart"], "Skin", "The skin is the largest organ, covering the entire body"),
    ],
    "Science": [
        _q("What is the chemical symbol for water?", ["H2O", "CO2", "O2", "NaCl"], "H2O", "Water is composed of hydrogen and oxygen with the formula H2O"),
        _q("What is the force that pulls objects towards Earth?", ["Magnetism", "Electricity", "Gravity", "Friction"], "Gravity", "Gravity is the force that attracts objects with mass towards each other"),
        _q("Which planet is known as the Red Planet?", ["Earth", "Mars", "Venus", "Jupiter"], "Mars", "Mars appears reddish due to iron oxide (rust) on its surface"),
    ],
}

DEFAULT_FALLBACK_QUESTIONS: List[GeneratedQuestion] = [
    _q("Which of these is NOT a programming language?", ["Python", "Java", "HTML", "Banana"], "Banana", "Banana is a fruit, not a programming language"),
    _q(
        "What does CPU stand for?",
        ["Central Processing Unit", "Computer Personal Unit", "Central Power Usage", "Computer Processing Utility"],
        "Central Processing Unit",
        "CPU stands for Central Processing Unit, the brain of a computer",
    ),
    _q("Which of these is a search engine?", ["Google", "Facebook", "Twitter", "Instagram"], "Google", "Google is a search engine, while the others are social media platforms"),
]


def fallback_questions(subject: str, count: int) -> List[GeneratedQuestion]:
    """Static questions for a subject, repeated in order until `count` is reached."""
    bank = FALLBACK_QUESTIONS.get(subject) or DEFAULT_FALLBACK_QUESTIONS
    return [bank[i % len(bank)].model_copy() for i in range(max(count, 0))]


def build_quiz_prompt(subject: str, topic: Optional[str], level: str, count: int) -> str:
    topic_clause = f" specifically focusing on the topic '{topic}'" if topic else ""
    return (
        f"Generate {count} multiple-choice questions for a quiz on the subject '{subject}'{topic_clause} at '{level}' level.\n\n"
        "Important requirements:\n"
        f"1. Each question should have {OPTIONS_PER_QUESTION} distinct options, one correct answer, and a brief explanation.\n"
        "2. Make sure all questions are unique and do not repeat concepts within the same quiz.\n"
        f"3. Questions should be diverse and cover different aspects of {topic or subject}.\n"
        "4. Ensure the correct answer is clearly identifiable and accurate.\n"
        f"5. Make the questions {level.lower()} difficulty level.\n\n"
        "Return ONLY a raw JSON array with no markdown formatting, no code blocks, and no backticks, in this exact format:\n"
        '[{"content": "Question text here?", "options": ["Option 1", "Option 2", "Option 3", "Option 4"], '
        '"correctAnswer": "The correct option", "explanation": "Explanation here"}]'
    )


def _extract_json_array(text: str) -> List[Any]:
    try:
        data = json.loads(text)
        if isinstance(data, list):
            return data
        if isinstance(data, dict) and isinstance(data.get("questions"), list):
            return data["questions"]
    except Exception:
        pass
    code_block = re.search(r"```(?:json)?\s*([\s\S]*?)\s*```", text)
    if code_block:
        try:
            data = json.loads(code_block.group(1))
            if isinstance(data, list):
                return data
        except Exception:
            pass
    first = text.find("[")
    last = text.rfind("]")
    if first != -1 and last != -1 and last > first:
        try:
            data = json.loads(text[first : last + 1])
            if isinstance(data, list):
                return data
        except Exception:
            pass
    raise ValueError("LLM did not return a JSON array of questions")


def _normalize_item(item: Any) -> Optional[GeneratedQuestion]:
    if not isinstance(item, dict):
        return None
    content = item.get("content") or item.get("question") or item.get("text")
    options = item.get("options")
    correct = item.get("correctAnswer") or item.get("correct_answer")
    explanation = item.get("explanation") or ""
    if not isinstance(content, str) or not content.strip():
        return None
    if not isinstance(options, list) or len(options) != OPTIONS_PER_QUESTION:
        return None
    options = [str(o).strip() for o in options]
    if any(not o for o in options) or len(set(options)) != len(options):
        return None
    if not isinstance(correct, str):
        return None
    correct = correct.strip()
    if correct not in options:
        # Some models answer with the option letter instead of its text
        letter = correct.upper().rstrip(").")
        if len(letter) == 1 and "A" <= letter <= "D":
            correct = options[ord(letter) - ord("A")]
        else:
            return None
    return GeneratedQuestion(
        content=content.strip(),
        options=options,
        correct_answer=correct,
        explanation=str(explanation).strip(),
    )


def parse_generated_questions(raw: str, count: int) -> List[GeneratedQuestion]:
    """Validate model output, drop malformed and duplicate questions, cap at `count`."""
    items = _extract_json_array(raw)
    questions: List[GeneratedQuestion] = []
    seen = set()
    for item in items:
        q = _normalize_item(item)
        if q is None:
            logger.debug("Dropping malformed generated question: %r", item)
            continue
        if q.content in seen:
            continue
        seen.add(q.content)
        questions.append(q)
    dropped = len(items) - len(questions)
    if dropped:
        logger.info("Filtered out %d malformed or duplicate generated questions", dropped)
    if not questions:
        raise ValueError("No usable questions in LLM output")
    return questions[:count]


async def generate_questions(
    subject: str,
    topic: Optional[str],
    level: str,
    count: int,
    *,
    client_factory: Callable[[], GeminiClient] = GeminiClient,
) -> Tuple[List[GeneratedQuestion], bool]:
    """Generate questions with Gemini, falling back to the static bank.

    Returns the questions and whether they came from the model.
    """
    if not settings.gemini_api_key:
        logger.info("Using fallback questions for %s (no API key)", subject)
        return fallback_questions(subject, count), False
    try:
        async with client_factory() as client:
            raw = await client.generate(
                build_quiz_prompt(subject, topic, level, count),
                system="You are a professional educator creating high-quality multiple-choice questions.",
                json_output=True,
            )
        questions = parse_generated_questions(raw, count)
        if len(questions) < count:
            logger.info("Model returned %d of %d requested questions", len(questions), count)
        return questions, True
    except Exception as exc:
        logger.warning("Question generation failed for %s, using fallback questions: %s", subject, exc)
        return fallback_questions(subject, count), False


def build_guidance_prompt(subject: str, topic: Optional[str], score: int, incorrect: Sequence[Dict[str, Any]]) -> str:
    missed = "\n".join(
        f"Question: {q['question']}\nCorrect Answer: {q['correct_answer']}\nUser Answer: {q['user_answer']}\n"
        for q in incorrect
    )
    topic_line = f"- Topic: {topic}\n" if topic else ""
    return (
        "A student has just completed a quiz with the following details:\n"
        f"- Subject: {subject}\n"
        f"{topic_line}"
        f"- Score: {score}%\n\n"
        "Here are the questions they answered incorrectly:\n"
        f"{missed or 'They answered all questions correctly!'}\n\n"
        "Based on their performance, provide specific, actionable guidance on how they can improve in these areas.\n"
        "Use an encouraging and supportive tone, with bullet points for key recommendations.\n"
        "Keep it concise (maximum 250 words) and focus on 3-4 specific areas for improvement.\n"
        "If they scored above 90%, congratulate them and suggest how they might challenge themselves further."
    )


async def generate_improvement_guidance(
    subject: str,
    topic: Optional[str],
    score: int,
    incorrect: Sequence[Dict[str, Any]],
    *,
    client_factory: Optional[Callable[[], GeminiClient]] = None,
) -> str:
    if not settings.gemini_api_key:
        return GUIDANCE_UNAVAILABLE
    factory = client_factory or (lambda: GeminiClient(model=settings.gemini_model_guidance))
    try:
        async with factory() as client:
            text = await client.generate(
                build_guidance_prompt(subject, topic, score, incorrect),
                system="You are an educational AI assistant.",
            )
        return text.strip() or GUIDANCE_FAILED
    except Exception as exc:
        logger.warning("Improvement guidance generation failed: %s", exc)
        return GUIDANCE_FAILED
