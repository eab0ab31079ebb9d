"""Minimal demonstration of a resumable support conversation."""

from support_chat import get_conversation_history, handle_message

if __name__ == "__main__":
    first = handle_message("Hello")
    print("Agent:", first["reply"])
    second = handle_message("What are your hours?", first["sessionId"])
    print("Agent:", second["reply"])
    for turn in get_conversation_history(first["sessionId"]):
        print(f"[{turn['sender']}] {turn['text']}")
