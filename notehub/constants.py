"""Shared constants used across the application."""

from enum import Enum


# =============================================================================
# Request kinds and durable statuses
# =============================================================================


class TaskKind(str, Enum):
    """Kinds of work a request can ask the agent to perform."""

    INPUT = "INPUT"  # File new content into the note tree
    SEARCH = "SEARCH"  # Answer a query with ranked snippets
    REFACTOR = "REFACTOR"  # Reorganize folder structure


class RequestStatus(str, Enum):
    """Durable lifecycle of a request row."""

    PENDING = "PENDING"
    PROCESSING = "PROCESSING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    CANCELLED = "CANCELLED"


# =============================================================================
# Tool names - SINGLE SOURCE OF TRUTH
# =============================================================================

# Control tools handled by the loop itself
TOOL_ASK_TO_USER = "ask_to_user"
TOOL_COMPLETE = "complete"
TOOL_NOTHING_MORE_TODO = "nothing_more_todo"

# Read-only tools
TOOL_LIST_FOLDER = "list_folder"
TOOL_READ_FILE = "read_file"

# Mutating tools offered to the model
TOOL_ADD_FOLDER = "add_folder"
TOOL_EDIT_FOLDER_NAME = "edit_folder_name"
TOOL_DELETE_FOLDER = "delete_folder"
TOOL_ADD_FILE = "add_file"
TOOL_EDIT_FILE = "edit_file"
TOOL_EDIT_FILE_NAME = "edit_file_name"
TOOL_MOVE_FILE = "move_file"
TOOL_DELETE_FILE = "delete_file"

# Rollback-only tools (never offered to the model)
TOOL_UNDO_ADD_FILE = "undo_add_file"
TOOL_UNDO_ADD_FOLDER = "undo_add_folder"
TOOL_RESTORE_FILE = "restore_file"

# Task extraction tools
TOOL_ADD_TODO = "add_todo"
TOOL_COMPLETE_TODO = "complete_todo"
TOOL_UPDATE_TODO = "update_todo"
TOOL_DELETE_TODO = "delete_todo"

MUTATING_TOOLS = frozenset(
    {
        TOOL_ADD_FOLDER,
        TOOL_EDIT_FOLDER_NAME,
        TOOL_DELETE_FOLDER,
        TOOL_ADD_FILE,
        TOOL_EDIT_FILE,
        TOOL_EDIT_FILE_NAME,
        TOOL_MOVE_FILE,
        TOOL_DELETE_FILE,
    }
)


# =============================================================================
# Redis keys
# =============================================================================

ASK_USER_KEY_PREFIX = "notehub:ask_user:"

# Marker used to keep the token warning block from being injected twice
TOKEN_WARNING_MARKER = "TOKEN LIMIT WARNING"

# Reason recorded when a pending question expires
USER_RESPONSE_TIMEOUT_REASON = "User response timeout"
