"""
Scope Text Templates

Renders a QueryScope to the plain text handed to an answer step.
Only what the scope already contains is rendered; nothing is looked up.
"""

from typing import TYPE_CHECKING, List

if TYPE_CHECKING:
    from .conversation import KnowledgeEntry, Message, QueryScope, ScopedThread, SpeechAct, ThreadSummary


THREAD_TEMPLATE = """=== THREAD: {subject} ===
Thread ID: {thread_id}

{messages_block}

{acts_block}"""


MESSAGE_TEMPLATE = """[{message_id}] {timestamp}
From: {sender}
To: {recipients}
CC: {cc}
Subject: {subject}

{body}
---"""


def render_message(message: "Message") -> str:
    """Render one message with its headers"""
    return MESSAGE_TEMPLATE.format(
        message_id=message.id,
        timestamp=message.timestamp.isoformat(),
        sender=message.sender.label,
        recipients=", ".join(p.label for p in message.recipients) or "(none)",
        cc=", ".join(p.label for p in message.cc) or "(none)",
        subject=message.subject,
        body=message.body.strip(),
    )


def render_speech_act(act: "SpeechAct") -> str:
    """One-line rendering: [KIND] actor: content"""
    return f"[{act.kind.value.upper()}] {act.actor.label}: {act.content} ({act.id})"


def _format_messages(messages: List["Message"]) -> str:
    if not messages:
        return "(no messages visible in this thread)"
    return "\n".join(render_message(m) for m in messages)


def _format_acts(acts: List["SpeechAct"]) -> str:
    if not acts:
        return "Speech acts: (none)"
    lines = ["Speech acts:"]
    lines.extend(f"- {render_speech_act(a)}" for a in acts)
    return "\n".join(lines)


def render_thread(thread: "ScopedThread") -> str:
    return THREAD_TEMPLATE.format(
        subject=thread.subject or "(no visible subject)",
        thread_id=thread.thread_id,
        messages_block=_format_messages(thread.messages),
        acts_block=_format_acts(thread.acts),
    ).strip()


def render_scope(scope: "QueryScope") -> str:
    """Render every visible thread, in scope order"""
    if scope.is_empty:
        return "(no accessible conversation history)"
    return "\n\n".join(render_thread(t) for t in scope.threads)


def render_summaries(summaries: List["ThreadSummary"]) -> str:
    """Summaries of older messages, one block per summary"""
    if not summaries:
        return ""
    lines = ["=== EARLIER CONVERSATION SUMMARY ==="]
    for n, summary in enumerate(summaries, 1):
        lines.append("")
        lines.append(f"Summary {n} (thread {summary.thread_id}, {len(summary.message_ids)} message(s)):")
        lines.append(summary.summary)
        if summary.key_points:
            lines.append("Key points:")
            lines.extend(f"  - {point}" for point in summary.key_points)
    return "\n".join(lines)


def render_knowledge(entries: List["KnowledgeEntry"]) -> str:
    if not entries:
        return ""
    lines = ["=== STORED KNOWLEDGE ==="]
    for entry in entries:
        lines.append("")
        lines.append(f"[{entry.category.value}] {entry.title}")
        lines.append(entry.content)
    return "\n".join(lines)
