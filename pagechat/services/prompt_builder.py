from collections.abc import Sequence

from pagechat.models.domain_models import Conversation, HistoryItem, Message, PageContext

PAGE_PROMPT = 'Current page: "{title}" ({url})\n\n{text}\n\nQuestion: {question}'


def build_user_prompt(page: PageContext, question: str) -> str:
    """Combine the page content and the question into one user message."""
    return PAGE_PROMPT.format(
        title=page.title, url=page.url, text=page.text, question=question
    )


def build_conversation(
    system_prompt: str,
    page: PageContext,
    question: str,
    history: Sequence[HistoryItem] = (),
    max_history: int = 6,
) -> Conversation:
    """System prompt, then the most recent ``max_history`` turns, then the question."""
    messages = [Message(role="system", content=system_prompt)]

    recent = list(history)[-max_history:] if max_history > 0 else []
    for item in recent:
        messages.append(Message(role=item.type, content=item.content))

    messages.append(Message(role="user", content=build_user_prompt(page, question)))
    return tuple(messages)
