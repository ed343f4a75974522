from __future__ import annotations

import json
from pathlib import Path
from typing import Dict

from .schemas import ChatSession

# Directory of JSON configs: focustutor/subjects/*.json (next to this module).
_SUBJECTS_DIR = Path(__file__).resolve().parent / "subjects"

_IN_CODE_DEFAULTS: Dict[str, dict] = {
    "math": {
        "id": "math",
        "name": "Mathematics",
        "description": "Step-by-step explanations, worked examples, and practice problems for mathematics.",
        "teaching_style": (
            "Explain concepts step by step, show intermediate steps, and ask the learner to attempt parts "
            "of the solution before revealing everything."
        ),
    },
    "physics": {
        "id": "physics",
        "name": "Physics",
        "description": "Intuitive explanations of physical concepts with equations and real-world examples.",
        "teaching_style": "State assumptions and units; relate formulas to physical intuition.",
    },
    "chemistry": {
        "id": "chemistry",
        "name": "Chemistry",
        "description": "Help with chemical reactions, stoichiometry, and conceptual understanding.",
        "teaching_style": "Use clear notation, explain each reaction step, and highlight safety-relevant facts.",
    },
    "history": {
        "id": "history",
        "name": "History",
        "description": "Contextual narratives of historical events with attention to sources and bias.",
        "teaching_style": "Provide timelines, causes and effects, and multiple viewpoints; avoid inventing citations.",
    },
    "computer-science": {
        "id": "computer-science",
        "name": "Computer Science",
        "description": "Programming, algorithms, and data structures.",
        "teaching_style": "Use short code examples and ask the learner to predict output before running it.",
    },
}


def _load_subjects_from_json() -> Dict[str, dict]:
    """Load subject configs from focustutor/subjects/*.json. Invalid or missing files are skipped."""
    result: Dict[str, dict] = {}
    if not _SUBJECTS_DIR.is_dir():
        return result
    for path in sorted(_SUBJECTS_DIR.glob("*.json")):
        try:
            with open(path, encoding="utf-8") as f:
                data = json.load(f)
            if not isinstance(data, dict):
                continue
            sid = data.get("id") or path.stem
            result[sid] = {
                "id": sid,
                "name": data.get("name") or sid,
                "description": data.get("description") or "",
                "teaching_style": data.get("teaching_style") or "",
            }
        except (json.JSONDecodeError, OSError):
            continue
    return result


def get_default_subjects() -> Dict[str, dict]:
    """
    Return default subject configs. Loads from focustutor/subjects/*.json when present;
    JSON entries override in-code defaults with the same id.
    """
    out = dict(_IN_CODE_DEFAULTS)
    for sid, cfg in _load_subjects_from_json().items():
        out[sid] = {**_IN_CODE_DEFAULTS.get(sid, {}), **cfg, "id": sid}
    return out


def resolve_subject_name(subject: str | None) -> str | None:
    """Map a default subject id ("math") to its display name; free text passes through."""
    if not subject or not subject.strip():
        return None
    subject = subject.strip()
    known = get_default_subjects().get(subject.lower())
    return known["name"] if known else subject


def build_tutor_system_prompt(session: ChatSession) -> str:
    """System prompt conditioning the tutor on the session's subject and locked topic."""

    base_prompt = (
        "You are a helpful study tutor. "
        "Explain step-by-step, ask clarifying questions when needed, "
        "and prefer hints before final answers. "
        "If you are uncertain, say so."
    )
    parts = [base_prompt]

    subject = next(
        (s for s in get_default_subjects().values() if s["name"] == session.subject),
        None,
    )
    if subject:
        parts.append(f"You are currently teaching the subject: {subject['name']}.")
        parts.append(f"Teaching style: {subject['teaching_style']}")
    elif session.subject:
        parts.append(f"You are currently teaching the subject: {session.subject}.")

    if session.current_topic:
        parts.append(
            f"The lesson topic is: {session.current_topic}. Keep every answer anchored to this topic."
        )
    if session.concepts_covered:
        parts.append("Concepts already covered: " + ", ".join(session.concepts_covered) + ".")
    return "\n\n".join(parts)
