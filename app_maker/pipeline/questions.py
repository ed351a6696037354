import re

CODE_FENCE = re.compile(r"```.*?(```|$)", re.DOTALL)
QUESTION_MARKS = ("?", "？")
TAIL_LINES = 3


def contains_question(text: str | None) -> bool:
    """Whether an agent reply ends by asking the user something.

    Fenced code is ignored. The reply asks a question when the text, or one of
    its last three non-empty lines, ends with a question mark (ASCII or fullwidth).
    """
    if not text:
        return False
    stripped = CODE_FENCE.sub("", text).strip()
    if not stripped:
        return False
    if stripped.endswith(QUESTION_MARKS):
        return True
    lines = [line.strip().rstrip("*_ ").strip() for line in stripped.splitlines() if line.strip()]
    return any(line.endswith(QUESTION_MARKS) for line in lines[-TAIL_LINES:])
