import asyncio

import streamlit as st
from config import API_BASE_URL, STREAMLIT_CONFIG, EXAMPLE_PROMPTS #type: ignore

from streamchat.chat.controller import ChatController, ChatMessage, ChatStatus
from streamchat.chat.projector import DisplayProjector, RenderUnit
from streamchat.errors import StoreError, TurnCancelledError
from streamchat.streaming.http_client import HttpConversationStore, HttpStreamProvider
from streamchat.utils.formatting import format_date


def init_session_state():
    """Initialize session state variables"""
    if "controller" not in st.session_state:
        st.session_state.controller = ChatController(
            HttpConversationStore(base_url=API_BASE_URL),
            HttpStreamProvider(base_url=API_BASE_URL),
        )
    if "projectors" not in st.session_state:
        st.session_state.projectors = {}


def run_action(action):
    """Run a controller action on a fresh event loop and wait for its tasks."""
    controller: ChatController = st.session_state.controller

    async def _run():
        result = action(controller)
        if asyncio.iscoroutine(result):
            await result
        await controller.wait_idle()

    asyncio.run(_run())


def projector_for(message: ChatMessage) -> DisplayProjector:
    key = message.turn_id or message.id
    projectors = st.session_state.projectors
    if key not in projectors:
        projectors[key] = DisplayProjector()
    return projectors[key]


def render_unit(unit: RenderUnit):
    if unit.kind == "markdown":
        st.markdown(unit.body + (" ▌" if unit.streaming else ""))
    elif unit.kind == "reasoning":
        with st.expander("Reasoning", expanded=unit.streaming):
            st.markdown(unit.body)
    elif unit.kind == "image":
        st.image(unit.url, caption=unit.body)
    elif unit.kind == "file":
        st.markdown(f"📎 [{unit.body}]({unit.url}) `{unit.label}`")
    elif unit.kind == "link":
        st.markdown(f"🔗 [{unit.body}]({unit.url})")
    elif unit.kind == "citation":
        suffix = f" ({unit.label})" if unit.label else ""
        st.caption(f"📄 {unit.body}{suffix}")


def display_message(message: ChatMessage):
    """Display a message in the chat interface"""
    with st.chat_message(message.role):
        for unit in projector_for(message).project(message.parts):
            render_unit(unit)
        if message.role == "assistant" and message.text:
            with st.popover("📋 Copy"):
                # code blocks carry a copy-to-clipboard button
                st.code(message.text, language=None)


def load_conversations():
    store: HttpConversationStore = st.session_state.controller.store
    try:
        return asyncio.run(store.list_conversations())
    except StoreError as e:
        st.error(f"Error loading conversations: {str(e)}")
        return []


def delete_conversation(conversation_id: str):
    controller: ChatController = st.session_state.controller
    try:
        asyncio.run(controller.store.delete_conversation(conversation_id))
    except StoreError as e:
        st.error(f"Error deleting conversation: {str(e)}")
        return
    if controller.conversation_id == conversation_id:
        run_action(lambda c: c.new_conversation())


def stream_reply(prompt: str):
    """Send ``prompt`` and redraw the streaming answer as events arrive."""
    controller: ChatController = st.session_state.controller
    with st.chat_message("user"):
        st.markdown(prompt)
    with st.chat_message("assistant"):
        placeholder = st.empty()
    # a click reruns the script, which interrupts the stream; the controller
    # discards the unfinished turn
    st.button("⏹ Stop", key="stop_stream")

    def redraw(c: ChatController):
        last = c.messages[-1] if c.messages else None
        if last is None or last.role != "assistant":
            return
        with placeholder.container():
            for unit in projector_for(last).project(last.parts):
                render_unit(unit)

    unsubscribe = controller.subscribe(redraw)
    try:
        with st.spinner("🤔 Thinking..."):
            run_action(lambda c: c.send(prompt))
    except ValueError as e:
        st.error(str(e))
    finally:
        unsubscribe()


def sidebar():
    controller: ChatController = st.session_state.controller
    with st.sidebar:
        st.title("💬 StreamChat")
        st.markdown("---")

        if st.button("🆕 New Chat", use_container_width=True):
            run_action(lambda c: c.new_conversation())
            st.rerun()

        st.markdown("---")
        st.markdown("### Conversations")

        conversations = load_conversations()
        if not conversations:
            st.caption("No conversations yet")
        for conv in conversations:
            cols = st.columns([5, 1])
            label = conv.title
            if conv.id == controller.conversation_id:
                label = f"**{label}**"
            if cols[0].button(label, key=f"conv_{conv.id}", use_container_width=True):
                run_action(lambda c: c.select_conversation(conv.id))
                st.rerun()
            if conv.updated_at is not None:
                cols[0].caption(format_date(conv.updated_at))
            if cols[1].button("🗑️", key=f"delete_{conv.id}"):
                delete_conversation(conv.id)
                st.rerun()


def main():
    st.set_page_config(
        page_title=STREAMLIT_CONFIG["page_title"],
        page_icon=STREAMLIT_CONFIG["page_icon"],
        layout="wide",
        initial_sidebar_state="expanded"
    )

    init_session_state()
    controller: ChatController = st.session_state.controller
    sidebar()

    st.title("💬 StreamChat")

    if controller.loading:
        st.info("Loading conversation...")

    for message in controller.messages:
        display_message(message)

    if not controller.messages:
        st.markdown("### Try asking")
        for example in EXAMPLE_PROMPTS:
            if st.button(example, key=f"example_{example}"):
                st.session_state.pending_prompt = example
                st.rerun()

    if controller.last_error is not None:
        st.error(f"{type(controller.last_error).__name__}: {controller.last_error}")

    turn = controller.current_turn
    if turn is not None and isinstance(turn.failure, TurnCancelledError):
        st.caption("⏹ Response stopped; it was not saved.")

    if (
        controller.messages
        and controller.status in (ChatStatus.READY, ChatStatus.ERROR)
        and st.button("🔄 Regenerate response")
    ):
        run_action(lambda c: c.regenerate_last())
        st.rerun()

    prompt = st.chat_input("Type your message...", max_chars=controller.settings.max_message_length)
    if "pending_prompt" in st.session_state:
        prompt = st.session_state.pop("pending_prompt")

    if prompt:
        stream_reply(prompt)
        st.rerun()


if __name__ == "__main__":
    main()
