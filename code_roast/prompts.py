"""
LLM prompts for code roasting.

Prompts are versioned and tracked in Git for rollback capability.
The submitted code is embedded verbatim; it is not escaped against prompt
injection.
"""

from typing import Dict, List

REVIEW_SCHEMA = """{
  "score": number, // 0-100 overall code quality score
  "summary": string, // A sarcastic but helpful summary of the code
  "feedback": [ // Array of feedback items
    {
      "type": string, // "roast", "issue", "suggestion", or "positive"
      "message": string // The feedback message
    }
  ],
  "metrics": { // Object with code quality metrics
    "readability": number, // 0-100
    "maintainability": number, // 0-100
    "efficiency": number, // 0-100
    "bestPractices": number, // 0-100
    "security": number // 0-100
  }
}"""

USER_INSTRUCTION = "Please review this code and provide feedback in the JSON format specified."

# Upper bound on generated output, in tokens
MAX_OUTPUT_TOKENS = 2000


def build_system_prompt(code: str, language: str) -> str:
    """Build the reviewer instructions for one submission."""

    prompt = f"""You are a code reviewer that provides sarcastic but helpful feedback. Your task is to analyze code and provide a JSON response with a score, summary, detailed feedback, and metrics.

Review the following {language} code:

```{language}
{code}
```

Provide a JSON response with the following structure:
{REVIEW_SCHEMA}

Make the review sarcastic and funny, but also provide genuinely helpful feedback.
Be critical but fair, and include at least one positive aspect of the code.
IMPORTANT: Your response must be valid JSON that can be parsed with a strict JSON parser."""

    return prompt


def build_messages(code: str, language: str) -> List[Dict[str, str]]:
    """Role-tagged messages sent to the text-generation service."""
    return [
        {"role": "system", "content": build_system_prompt(code, language)},
        {"role": "user", "content": USER_INSTRUCTION},
    ]


# Prompt version for tracking/rollback
PROMPT_VERSION = "v1.0"
