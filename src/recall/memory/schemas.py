"""Default extraction schemas."""

from recall.memory.base import MemorySchema, UpdateMode

USER_PROFILE_SCHEMA = MemorySchema(
    name="user_profile",
    description=(
        "Update this document to maintain up-to-date information about the user "
        "in the conversation."
    ),
    update_mode=UpdateMode.PATCH,
    parameters={
        "type": "object",
        "properties": {
            "preferred_name": {"type": "string", "description": "How the user wants to be addressed"},
            "age": {"type": "integer"},
            "interests": {"type": "array", "items": {"type": "string"}},
            "occupation": {"type": "string"},
            "location": {"type": "string"},
            "conversation_preferences": {
                "type": "array",
                "items": {"type": "string"},
                "description": "Style, tone and format the user prefers",
            },
            "relationships": {
                "type": "array",
                "items": {
                    "type": "object",
                    "properties": {"name": {"type": "string"}, "relation": {"type": "string"}},
                },
            },
        },
    },
)

NOTES_SCHEMA = MemorySchema(
    name="notes",
    description=(
        "Save notable memories the user has shared, for later recall: plans, events, "
        "decisions and facts that are not part of the profile."
    ),
    update_mode=UpdateMode.INSERT,
    parameters={
        "type": "object",
        "properties": {
            "context": {
                "type": "string",
                "description": "The situation or circumstance where this memory may be relevant",
            },
            "content": {"type": "string", "description": "The information to remember"},
        },
        "required": ["context", "content"],
    },
)

DEFAULT_MEMORY_SCHEMAS = [USER_PROFILE_SCHEMA, NOTES_SCHEMA]
