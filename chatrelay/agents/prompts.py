"""System prompt and prompt parts sent to the agent backend."""

from typing import List, Optional

from ..models.agent import PromptContext, PromptPart


def build_chat_system_prompt(context: Optional[PromptContext] = None) -> str:
    """Instructions that keep agent output suited to a chat thread."""
    lines = [
        "COMMUNICATION STYLE:",
        "- Be concise and conversational - this is chat, not documentation",
        "- Use short paragraphs, avoid walls of text",
        "- Get straight to the point",
        "",
        "MESSAGE BREVITY:",
        "- Prefer short results over step-by-step narration",
        "- Skip tool call labels like ':arrow_forward: bash'",
        "- If listing tasks, keep it compact",
        "",
        "PROGRESS CHECKLIST:",
        "- Share a short checklist of what you're doing",
        "- Mention searches once with a result count if known",
        "- List edits with the file path and a brief why",
        "",
        "SLACK CONTEXT:",
    ]

    if context:
        lines.append(f"- Channel: {context.channel_id}")
        lines.append(f"- Thread: {context.thread_id}")
        lines.append(f"- User: <@{context.user_id}>")

    base_url = (context.action_api_url if context else None) or "<ACTION_API_URL>"
    lines.extend([
        "",
        "SLACK ACTIONS:",
        "- Use bash + curl to call the Slack action API.",
        f"- Endpoint: {base_url.rstrip('/')}/action",
        "- Payload: {\"action\":\"post_message\",\"channelId\":\"...\",\"threadId\":\"...\",\"messageId\":\"...\",\"text\":\"...\"}",
        "- Supported actions: post_message, add_reaction, get_thread_messages, ask_user, get_user_info, upload_file.",
        "- Required fields: channelId; threadId for thread actions; messageId for reactions; userId for get_user_info.",
        "- You can use any tool available via bash, curl",
        "",
        "IMPORTANT: Your text output is automatically posted to Slack.",
        "- When asking the user to choose options, you can send an ask_user Slack action, do NOT also output text - the buttons are enough.",
        "- Only output text OR use a messaging tool, never both.",
        "",
        "FORMATTING:",
        "- Slack uses *bold* and _italic_ (not **bold** or *italic*)",
        "- Use ` for inline code and ``` for code blocks",
        "- Keep responses readable on mobile screens",
        "",
        "TASK LISTS:",
        "- When sharing tasks, put each item on its own line",
        "- Use four states: ☐ not started, 🔄 in progress, ✅ done, 🚫 cancelled",
        "- If you include a task list, keep it at the top of the response",
    ])
    return "\n".join(lines)


def build_prompt_parts(
    message: str,
    channel_instructions: Optional[str] = None,
    thread_history: Optional[str] = None
) -> List[PromptPart]:
    """
    Assemble the text parts of a prompt.

    Args:
        message: The user's request
        channel_instructions: Combined channel and agent instructions
        thread_history: Earlier thread messages, one ``author: text`` per line

    Returns:
        Parts in order: instructions, history, message
    """
    parts: List[PromptPart] = []
    if channel_instructions:
        parts.append(PromptPart(text=f"<channel-instructions>\n{channel_instructions}\n</channel-instructions>"))
    if thread_history:
        parts.append(PromptPart(text=f"<thread-history>\n{thread_history}\n</thread-history>"))
    parts.append(PromptPart(text=message))
    return parts


def combine_instructions(*sections: Optional[str]) -> str:
    return "\n\n".join(section for section in sections if section and section.strip())
