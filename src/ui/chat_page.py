"""NiceGUI chat page driven by the application's coordinator."""

import logging
import re
from datetime import datetime

from fastapi import Request
from nicegui import events, ui

from src.chat.coordinator import UploadCoordinator
from src.chat.errors import SubmissionError
from src.chat.watchdog import detect_device_class
from src.models.schemas import FileCandidate, Message, StreamingStatus
from src.uploads.validator import SUPPORTED_FORMATS_LABEL, format_file_size, validate

logger = logging.getLogger(__name__)

_CODE_BLOCK = re.compile(r"```(\w*)\n?([\s\S]*?)```")
_INLINE_CODE = re.compile(r"`([^`\n]+)`")
_LINK = re.compile(r"\[([^\]]+)\]\((https?://[^)\s]+)\)")
_PLACEHOLDER = "\x00{}\x00"
_STASHED = re.compile("\x00(\\d+)\x00")


def _escape(text: str) -> str:
    return (
        text.replace("&", "&amp;")
        .replace("<", "&lt;")
        .replace(">", "&gt;")
        .replace('"', "&quot;")
    )


def _render_lists(text: str, marker: str, tag: str, css: str) -> str:
    lines = []
    in_list = False
    for line in text.split("\n"):
        stripped = line.strip()
        if re.match(marker, stripped):
            if not in_list:
                lines.append(f'<{tag} class="{css}">')
                in_list = True
            lines.append(f"<li>{re.sub(marker, '', stripped)}</li>")
            continue
        if in_list:
            lines.append(f"</{tag}>")
            in_list = False
        lines.append(line)
    if in_list:
        lines.append(f"</{tag}>")
    return "\n".join(lines)


def render_safe_html(raw: str) -> str:
    """Render message text as HTML that is safe to inject.

    All input is escaped before markup is added, so raw HTML in a message
    shows as text. Supports code blocks, inline code, headings, bold,
    italic, http(s) links and lists. Stored content is never modified.
    """
    stash: list[str] = []

    def keep(html: str) -> str:
        stash.append(html)
        return _PLACEHOLDER.format(len(stash) - 1)

    text = _escape(raw.replace("\x00", ""))
    text = _CODE_BLOCK.sub(
        lambda m: keep(
            '<pre class="bg-gray-800 text-gray-100 rounded-lg p-3 my-2 overflow-x-auto '
            f'text-xs"><code>{m.group(2)}</code></pre>'
        ),
        text,
    )
    text = _INLINE_CODE.sub(
        lambda m: keep(
            '<code class="bg-gray-200 text-pink-600 px-1.5 py-0.5 rounded text-xs">'
            f"{m.group(1)}</code>"
        ),
        text,
    )
    text = _LINK.sub(
        lambda m: keep(
            f'<a href="{m.group(2)}" class="text-blue-600 underline" target="_blank" '
            f'rel="noopener noreferrer">{m.group(1)}</a>'
        ),
        text,
    )

    text = re.sub(r"(?m)^###\s+(.+)$", r'<h4 class="font-semibold mt-2">\1</h4>', text)
    text = re.sub(r"(?m)^##\s+(.+)$", r'<h3 class="font-semibold text-base mt-2">\1</h3>', text)
    text = re.sub(r"(?m)^#\s+(.+)$", r'<h2 class="font-semibold text-lg mt-2">\1</h2>', text)

    text = re.sub(r"\*\*(.+?)\*\*", r"<strong>\1</strong>", text)
    text = re.sub(r"(?<!\w)__(.+?)__(?!\w)", r"<strong>\1</strong>", text)
    text = re.sub(r"\*([^*\n]+)\*", r"<em>\1</em>", text)
    text = re.sub(r"(?<!\w)_([^_\n]+)_(?!\w)", r"<em>\1</em>", text)

    text = _render_lists(text, r"^[-*]\s+", "ul", "list-disc list-inside my-2 space-y-1")
    text = _render_lists(text, r"^\d+\.\s+", "ol", "list-decimal list-inside my-2 space-y-1")
    text = text.replace("\n", "<br>")

    # stashed fragments may wrap earlier ones
    while _STASHED.search(text):
        text = _STASHED.sub(lambda m: stash[int(m.group(1))], text)
    return text


def describe_status(status: StreamingStatus) -> str | None:
    """Label of the progress indicator, None when nothing is running."""
    if status.is_calling_tool:
        return f"Using {status.tool_name}..." if status.tool_name else "Using tools..."
    if status.is_accessing_knowledge:
        return "Searching knowledge base..."
    if status.is_memory_update_started:
        return "Updating memory..."
    if status.is_thinking:
        return "Thinking..."
    if status.has_completed:
        return "Done"
    return None


CUSTOM_CSS = """
<link href="https://fonts.googleapis.com/css2?family=Inter:wght@400;500;600&display=swap"
      rel="stylesheet">
<style>
    * { font-family: 'Inter', sans-serif; }
    body { background: #f5f5f5; min-height: 100vh; }

    .app-container {
        background: white;
        border-radius: 12px;
        box-shadow: 0 2px 8px rgba(0, 0, 0, 0.1);
        overflow: hidden;
    }
    .header { background: linear-gradient(135deg, #1e3a8a 0%, #7f1d1d 100%); }

    .message-user {
        background: #1e3a8a;
        color: white;
        border-radius: 18px 18px 4px 18px;
    }
    .message-agent {
        background: #f3f4f6;
        color: #1f2937;
        border-radius: 18px 18px 18px 4px;
    }
    .message-error { background: #fef2f2; color: #991b1b; }

    .typing-dot {
        width: 8px; height: 8px;
        background: #1e3a8a;
        border-radius: 50%;
        animation: bounce 1.4s infinite ease-in-out;
    }
    .typing-dot:nth-child(2) { animation-delay: 0.2s; }
    .typing-dot:nth-child(3) { animation-delay: 0.4s; }
    @keyframes bounce {
        0%, 60%, 100% { transform: translateY(0); }
        30% { transform: translateY(-6px); }
    }

    .message-agent pre { margin: 0.5rem 0; }
    .message-agent code { font-family: 'Menlo', 'Monaco', monospace; }
</style>
"""


def register_chat_page(coordinator: UploadCoordinator) -> None:
    """Register the chat page for the application's coordinator."""

    @ui.page("/")
    def chat_page(request: Request) -> None:
        ui.add_head_html(CUSTOM_CSS)
        coordinator.device_class = detect_device_class(request.headers.get("user-agent"))

        pending_files: list[FileCandidate] = []
        dirty = True

        messages_container: ui.column
        status_label: ui.label
        storage_label: ui.label
        files_row: ui.row
        input_field: ui.textarea
        send_btn: ui.button

        def mark_dirty() -> None:
            nonlocal dirty
            dirty = True

        unsubscribe = coordinator.subscribe(mark_dirty)
        ui.context.client.on_disconnect(unsubscribe)

        def render_citations(message: Message) -> None:
            references = message.extra_data.references if message.extra_data else None
            if not references:
                return
            with ui.expansion(f"{len(references)} sources").classes("text-xs text-gray-500"):
                for ref in references:
                    ui.label(ref.name or "Document").classes("text-xs font-semibold")
                    ui.label(ref.content[:300]).classes("text-xs text-gray-500")

        def render_message(message: Message) -> None:
            is_user = message.role == "user"
            align = "justify-end" if is_user else "justify-start"
            bubble = "message-user" if is_user else "message-agent"
            if message.error:
                bubble += " message-error"
            sent_at = datetime.fromtimestamp(message.created_at).strftime("%I:%M %p")

            with ui.row().classes(f"w-full {align}"):
                with ui.column().classes("max-w-[75%] gap-1"):
                    with ui.element("div").classes(f"px-4 py-3 {bubble}"):
                        if message.streaming and not message.content:
                            with ui.row().classes("gap-1"):
                                for _ in range(3):
                                    ui.element("div").classes("typing-dot")
                        else:
                            ui.html(render_safe_html(message.content), sanitize=False).classes(
                                "text-sm leading-relaxed"
                            )
                        for attachment in message.attachments or []:
                            ui.label(
                                f"{attachment.name} ({format_file_size(attachment.size)})"
                            ).classes("text-xs opacity-80")
                    if not is_user:
                        render_citations(message)
                    ui.label(sent_at).classes(
                        f"text-[10px] text-gray-400 {'self-end' if is_user else 'self-start'}"
                    )

        def refresh() -> None:
            nonlocal dirty
            if not dirty:
                return
            dirty = False

            messages_container.clear()
            with messages_container:
                if not coordinator.store.messages:
                    with ui.column().classes("w-full h-64 items-center justify-center gap-3"):
                        ui.icon("forum").classes("text-5xl text-gray-300")
                        ui.label("Start a conversation").classes("text-lg text-gray-400")
                for message in coordinator.store.messages:
                    render_message(message)

            status_label.set_text(describe_status(coordinator.status) or "")
            stats = coordinator.budget.get_stats()
            storage_label.set_text(
                f"{format_file_size(stats.usage_bytes)} / "
                f"{format_file_size(stats.limit_bytes)} ({stats.percentage:.0f}%)"
            )
            if coordinator.is_streaming:
                send_btn.disable()
            else:
                send_btn.enable()

        def refresh_files() -> None:
            files_row.clear()
            with files_row:
                for candidate in pending_files:
                    ui.chip(
                        f"{candidate.name} ({format_file_size(candidate.size)})",
                        removable=True,
                        on_value_change=lambda _, c=candidate: remove_file(c),
                    ).props("dense")

        def remove_file(candidate: FileCandidate) -> None:
            if candidate in pending_files:
                pending_files.remove(candidate)
            refresh_files()

        async def handle_upload(e: events.UploadEventArguments) -> None:
            content = await e.file.read()
            candidate = FileCandidate(
                name=e.file.name,
                size=len(content),
                mime_type=e.file.content_type or "",
                content=content,
            )
            result = validate(candidate)
            if not result.is_valid:
                ui.notify(result.error, type="negative")
                return
            pending_files.append(candidate)
            refresh_files()

        async def send_message() -> None:
            text = input_field.value or ""
            files = list(pending_files)
            if coordinator.is_streaming:
                ui.notify("Wait for the current answer to finish.", type="warning")
                return

            input_field.value = ""
            pending_files.clear()
            refresh_files()
            try:
                await coordinator.submit(text, files)
            except SubmissionError as e:
                input_field.value = text
                pending_files.extend(files)
                refresh_files()
                ui.notify(str(e), type="negative")
                return

            if coordinator.storage_error:
                ui.notify(coordinator.storage_error, type="warning")

        def new_chat() -> None:
            pending_files.clear()
            refresh_files()
            coordinator.reset()
            mark_dirty()

        # === UI Layout ===
        with (
            ui.element("div").classes("w-full min-h-screen p-4 md:p-8"),
            ui.column().classes("w-full max-w-3xl mx-auto app-container").style(
                "height: calc(100vh - 4rem)"
            ),
        ):
            # Header
            with ui.row().classes("w-full header px-5 py-4 items-center justify-between"):
                with ui.row().classes("items-center gap-3"):
                    ui.icon("gavel").classes("text-white text-3xl")
                    ui.label("Legal Assistant").classes("text-lg font-semibold text-white")
                with ui.row().classes("items-center gap-3"):
                    storage_label = ui.label().classes("text-xs text-white/80 font-mono")
                    ui.button(icon="add", on_click=new_chat).props("flat round color=white")

            # Messages
            with (
                ui.scroll_area().classes("flex-grow w-full bg-gray-50"),
                ui.column().classes("w-full p-5"),
            ):
                messages_container = ui.column().classes("w-full gap-4")
            status_label = ui.label().classes("px-5 text-sm text-gray-500 italic")

            # Input
            files_row = ui.row().classes("w-full px-4 gap-2")
            with ui.row().classes("w-full p-4 gap-3 items-end bg-white border-t"):
                ui.upload(
                    label=SUPPORTED_FORMATS_LABEL,
                    multiple=True,
                    auto_upload=True,
                    on_upload=handle_upload,
                ).props('flat dense accept=".pdf,.txt,.png,.jpg,.jpeg,.webp"').classes("w-40")
                input_field = (
                    ui.textarea(placeholder="Type a message...")
                    .props("autogrow borderless dense rows=1")
                    .classes("flex-grow")
                    .on("keydown.enter.prevent", send_message)
                )
                send_btn = ui.button(icon="send", on_click=send_message).props(
                    "round unelevated"
                )

        ui.timer(0.1, refresh)
