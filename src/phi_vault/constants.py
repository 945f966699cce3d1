"""Shared constants for the PHI vault engine."""

SERVICE_NAME = "phi-vault"

TOKEN_PREFIX = "phi:vault"
ENTRY_ID_LENGTH = 24

AUDIT_ACTOR = "mcp"

# Structured demographic fields held in the per-dependent vault document.
STRUCTURED_PHI_FIELDS = (
    "legal_name",
    "full_dob",
    "birth_year",
    "sex",
    "contact",
    "address",
    "preferred_name",
    "relationship_note",
)

# Key used by create/update payloads that nest demographics under one object.
NESTED_PHI_KEY = "phi"

PROFILE_KEY = "deidentified_profile"
VAULT_ID_KEY = "phi_vault_id"

MASKED_TOKEN = "[Redacted]"
