"""
Template name constants.

Pure constants - no I/O or file system knowledge.
"""


class Template:
    """Template name constants. Use these instead of raw strings."""

    FOLLOW_UP_CLASSIFICATION = "follow_up_classification"
    POSITIONAL_REFERENCE = "positional_reference"
    ROUTED_SESSION = "routed_session"
    NODE_CAPABILITY_MATCH = "node_capability_match"
    NODE_DIGEST = "node_digest"
    CRUD_INTENT = "crud_intent"
    COLLECTOR_DETECTION = "collector_detection"
    FIELD_EXTRACTION = "field_extraction"
    CONVERSATIONAL = "conversational"
