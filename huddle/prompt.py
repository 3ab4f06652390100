"""Prompt composition for agent turns."""

from typing import Iterable, List, Optional, Sequence

from huddle.context import EntityContext, EntityReference
from huddle.markup import CommandNode, EntityCategory, MentionNode
from huddle.markup import parse as parse_markup

NO_REPLY = "[NO_REPLY]"


def compose(raw_markup: str, entity_contexts: Optional[Sequence[EntityContext]] = None) -> str:
    """Merge entity context, command instructions, and user text into one prompt.

    Output order is always context blocks, then instruction blocks, then the
    user's own text, whatever order the chips appeared in. A message with no
    chips and no contexts is returned unchanged, so composing an already
    composed prompt is a no-op.

    Args:
        raw_markup: Message markup as typed by the user
        entity_contexts: Transcripts resolved from the message's mentions

    Returns:
        Model-ready prompt text
    """
    contexts = list(entity_contexts or [])
    document = parse_markup(raw_markup)
    commands = document.commands()
    mentions = document.mentions()

    if not mentions and not commands and not contexts:
        return raw_markup

    instructions = []
    for command in commands:
        if command.body:
            instructions.append((command.label, command.body))
    document.remove(lambda node: isinstance(node, CommandNode))

    if contexts:
        resolved = {ctx.key for ctx in contexts}
        document.remove(lambda node: isinstance(node, MentionNode) and node.key in resolved)

    if not instructions and not contexts:
        return raw_markup

    parts = []
    for ctx in contexts:
        if not ctx.transcript:
            continue
        label = ctx.display_label
        parts.append(
            f"[Context from {label}]\n"
            f"Below are the messages from {label}. Use them as context for your response.\n\n"
            f"{ctx.transcript}\n\n"
            f"[End of {label} context]\n\n"
        )

    for label, body in instructions:
        parts.append(f"[{label} instructions]\n{body}\n\n")

    user_text = document.text()
    if user_text:
        parts.append(user_text)

    return "".join(parts).strip()


def activated_skills(raw_markup: str) -> List[str]:
    """Unique skill names from skill chips in a message."""
    names = []
    for command in parse_markup(raw_markup).commands():
        name = command.skill_name
        if name and name not in names:
            names.append(name)
    return names


def session_context(base_prompt: str, session_name: Optional[str]) -> str:
    """Append the name the user gave an agent session to the persona prompt."""
    if not session_name:
        return base_prompt
    return (
        f"{base_prompt}\n\nThe user created this session with the following context: "
        f'"{session_name}". Keep this in mind as you help them.'
    )


def with_skills(base_prompt: str, skill_instructions: Iterable[str]) -> str:
    """Append activated skill instructions to a system prompt."""
    skills = [s for s in skill_instructions if s]
    if not skills:
        return base_prompt
    section = [
        "\n\n# Activated Skills",
        "The user has activated the following skills. Follow their instructions carefully.",
        *skills,
    ]
    return base_prompt + "\n\n".join(section)


def entity_instructions(entities: Sequence[EntityReference]) -> Optional[tuple]:
    """Prefix and suffix teaching the model to link known entities.

    Known entities are written as ``[label](mention://category/id)`` links.
    Returns None when there are no entities.
    """
    if not entities:
        return None

    lines = [
        "# Entity Mention Formatting",
        "",
        "When your response text refers to a known person, channel, or agent session listed below,",
        "write it as a standard Markdown link using the mention:// protocol.",
        "Do NOT wrap it in backticks or code formatting.",
        "",
        "Format: [display name](mention://category/entityId)",
        "",
        "Only link genuine references to the entity. Do NOT link coincidental word matches.",
        "",
        "## Known Entities",
        "",
    ]
    headings = (
        ("People", EntityCategory.PERSON),
        ("Channels", EntityCategory.CHANNEL),
        ("Agent Sessions", EntityCategory.AGENT_SESSION),
        ("Apps", EntityCategory.APP),
    )
    for heading, category in headings:
        items = [e for e in entities if e.category is category]
        if not items:
            continue
        lines.append(f"{heading}:")
        for e in items:
            lines.append(f'- "{e.label}" -> write as [{e.display_label}](mention://{category.wire}/{e.entity_id})')
        lines.append("")

    if any(e.category is not EntityCategory.APP for e in entities):
        lines.append(
            "When calling tools (send_message, send_dm, etc.), use the plain entity name without @ or # prefixes."
        )
        lines.append("")
    lines.extend(["---", ""])

    suffix = (
        "\n\nREMINDER: Every person, channel, or agent session name from the Known Entities list that you "
        "reference MUST be a Markdown link with the mention:// protocol."
    )
    return "\n".join(lines), suffix


def build_system_prompt(
    persona: str,
    session_name: Optional[str] = None,
    skill_instructions: Iterable[str] = (),
    entities: Sequence[EntityReference] = (),
) -> str:
    """System prompt for an agent turn.

    Persona, then session context, then activated skills; entity-link
    instructions wrap the whole prompt as a prefix and a closing reminder.
    """
    prompt = with_skills(session_context(persona, session_name), skill_instructions)
    wrapper = entity_instructions(entities)
    if wrapper:
        prefix, suffix = wrapper
        prompt = prefix + prompt + suffix
    return prompt


def autoreply_system_prompt(persona: str, channel_name: Optional[str]) -> str:
    """System prompt for an unprompted reply in a shared conversation."""
    if channel_name:
        extra = (
            f"\n\nYou are currently in the #{channel_name} channel. Respond naturally as a participant in the "
            "conversation. Keep your reply concise and relevant. A few sentences is usually enough. "
            f'Don\'t repeat what others said. If you have nothing meaningful to add, reply with exactly "{NO_REPLY}".'
        )
    else:
        extra = (
            "\n\nYou were mentioned in a conversation. Reply naturally and concisely as yourself. "
            "A few sentences is usually enough."
        )
    return persona + extra


def autoreply_user_prompt(recent: Sequence[tuple], agent_name: str) -> str:
    """User turn listing recent ``(username, text)`` lines for an unprompted reply."""
    transcript = "\n".join(f"{username}: {text}" for username, text in recent)
    return f"Here is the recent conversation:\n\n{transcript}\n\nRespond as {agent_name}."
