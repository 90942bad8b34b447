"""
State Definitions for the Reporting Conversation
"""
from enum import Enum


class ConversationState(str, Enum):
    """States for the citizen reporting flow"""

    LANGUAGE_SELECT = "LANGUAGE_SELECT"
    NAME_COLLECTION = "NAME_COLLECTION"
    MENU = "MENU"

    # דיווח - אחרי בחירה 1-6 / 7
    AWAITING_REPORT = "AWAITING_REPORT"
    AWAITING_SUGGESTION = "AWAITING_SUGGESTION"
    # טיוטה שמורה, חסר מיקום
    AWAITING_LOCATION = "AWAITING_LOCATION"

    # בחירה 8 - נשלח קישור לטופס הצטרפות
    JOIN_TEAM_LINK_SENT = "JOIN_TEAM_LINK_SENT"


# מצבים שבהם "menu" לא מתפרש כפקודה - המשתמש עוד לא סיים הרשמה
MENU_COMMAND_BLOCKED_STATES = frozenset({
    ConversationState.LANGUAGE_SELECT,
    ConversationState.NAME_COLLECTION,
})


# "reset" מכל מצב ל-LANGUAGE_SELECT עובר דרך force_state ולא מופיע כאן
CONVERSATION_TRANSITIONS = {
    ConversationState.LANGUAGE_SELECT: [
        ConversationState.LANGUAGE_SELECT,
        ConversationState.NAME_COLLECTION,
    ],
    ConversationState.NAME_COLLECTION: [
        ConversationState.NAME_COLLECTION,
        ConversationState.MENU,
    ],
    ConversationState.MENU: [
        ConversationState.MENU,
        ConversationState.AWAITING_REPORT,
        ConversationState.AWAITING_SUGGESTION,
        ConversationState.JOIN_TEAM_LINK_SENT,
    ],
    ConversationState.AWAITING_REPORT: [
        ConversationState.MENU,
        ConversationState.AWAITING_LOCATION,
        ConversationState.AWAITING_REPORT,
    ],
    ConversationState.AWAITING_SUGGESTION: [
        ConversationState.MENU,
        ConversationState.AWAITING_LOCATION,
        ConversationState.AWAITING_SUGGESTION,
    ],
    ConversationState.AWAITING_LOCATION: [
        ConversationState.MENU,
        ConversationState.AWAITING_LOCATION,
    ],
    ConversationState.JOIN_TEAM_LINK_SENT: [ConversationState.MENU],
}
