"""
State Machine Module for the Reporting Conversation
"""
from app.state_machine.states import ConversationState
from app.state_machine.manager import SessionManager

__all__ = ["ConversationState", "SessionManager"]
