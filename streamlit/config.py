import os

# API Configuration
API_BASE_URL = os.getenv("STREAMCHAT_API_BASE_URL", "http://localhost:8000/api/v1")

# Streamlit Configuration
STREAMLIT_CONFIG = {
    "page_title": "StreamChat",
    "page_icon": "💬",
    "layout": "wide",
    "initial_sidebar_state": "expanded"
}

# Shown on an empty conversation
EXAMPLE_PROMPTS = [
    "Explain the difference between a process and a thread.",
    "Write a haiku about autumn in Kyoto.",
    "Summarize the plot of Hamlet in three sentences.",
    "How do I reverse a list in Python?",
]
