def to_plain_text(history: list[dict]) -> str:
    """Convert conversation history to plain text.

    Agent lines prefixed with "Agent:", caller lines with "Caller:".
    Entries with any other role are dropped.
    """
    if not history:
        return ""

    lines = []
    for entry in history:
        role = entry.get("role", "")
        if role == "agent":
            lines.append(f"Agent: {entry['content']}")
        elif role == "caller":
            lines.append(f"Caller: {entry['content']}")
    return "\n".join(lines)


def from_provider_messages(messages: list[dict]) -> list[dict]:
    """Map a voice-agent provider's message list onto caller/agent history.

    Provider roles "user"/"customer" become caller, "assistant"/"bot" become
    agent; system and tool messages are skipped.
    """
    history = []
    for msg in messages or []:
        role = (msg.get("role") or "").lower()
        content = msg.get("message") or msg.get("content") or ""
        if not content:
            continue
        if role in ("user", "customer"):
            history.append({"role": "caller", "content": content})
        elif role in ("assistant", "bot"):
            history.append({"role": "agent", "content": content})
    return history
