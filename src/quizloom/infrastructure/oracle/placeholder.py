from __future__ import annotations

import json

_PLACEHOLDER_QUESTIONS = [
    {
        "question": "Based on the content provided, which of the following best describes the main topic?",
        "options": [
            "Technical documentation",
            "Academic examination material",
            "General knowledge content",
            "Research methodology",
        ],
        "correctAnswer": 1,
        "explanation": "The content appears to be from an academic examination based on its structure and format.",
    },
    {
        "question": "What is the most important aspect to consider when analyzing this type of document?",
        "options": [
            "Length of the document",
            "Font size and formatting",
            "Content structure and organization",
            "Publication date",
        ],
        "correctAnswer": 2,
        "explanation": "Content structure and organization are key to understanding the material.",
    },
    {
        "question": "Which approach would be most effective for processing this content?",
        "options": [
            "Manual transcription only",
            "Automated text extraction with AI analysis",
            "Image recognition techniques",
            "Audio conversion methods",
        ],
        "correctAnswer": 1,
        "explanation": "Automated extraction combined with AI analysis is the most efficient route.",
    },
]

_LONG_CONTENT_QUESTION = {
    "question": "What would be the best strategy for handling large amounts of text content?",
    "options": [
        "Process everything at once",
        "Break into smaller chunks and analyze systematically",
        "Focus only on the beginning",
        "Skip complex sections",
    ],
    "correctAnswer": 1,
    "explanation": "Breaking content into manageable chunks allows for more thorough analysis.",
}


class PlaceholderOracle:
    """Offline stand-in returning a fixed question set tagged as placeholder content."""

    def __init__(self, long_content_chars: int = 1000) -> None:
        self.long_content_chars = long_content_chars
        self.calls = 0

    def generate(self, content: str | bytes, instructions: str) -> str:
        self.calls += 1
        questions = [dict(item) for item in _PLACEHOLDER_QUESTIONS]
        if len(content) > self.long_content_chars:
            questions.append(dict(_LONG_CONTENT_QUESTION))
        for item in questions:
            item["source"] = "placeholder"
        return json.dumps({"questions": questions})
