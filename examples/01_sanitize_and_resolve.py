"""Walk a visit note through the write and read paths.

Requires a Presidio analyzer reachable at PRESIDIO_ANALYZER_URL.
"""

import asyncio
import json

from phi_vault.config import load_config
from phi_vault.logging import bind_context, setup_logging
from phi_vault.runtime import build_service
from phi_vault.tools import invoke_tool


def show(title, payload):
    print(f"--- {title}")
    print(json.dumps(payload, indent=2))


async def main():
    config = load_config()
    setup_logging(config.log_level)
    bind_context(service=config.service_name, environment=config.environment)
    service = build_service(config)

    # 1. Demographics go to the structured vault
    dependent = await invoke_tool(
        service,
        "upsert_dependent_phi",
        {
            "dependentId": "dep-demo",
            "record": {
                "record_identifier": "DEMO-1",
                "phi": {
                    "legal_name": {"given": "John", "family": "Doe"},
                    "full_dob": "1990-05-01",
                    "address": {"state": "TX", "country": "USA"},
                },
            },
        },
    )
    show("dependent", dependent)

    # 2. Free text is tokenised before it is stored
    sanitized = await invoke_tool(
        service,
        "sanitize_fields",
        {
            "resourceType": "visit",
            "resourceId": "visit-demo",
            "dependentId": "dep-demo",
            "payload": {"reason": "Follow-up", "notes": "John Doe called from 555-123-4567."},
            "knownIdentifiers": ["John Doe"],
        },
    )
    show("sanitized visit", sanitized)

    # 3. Authorized read
    resolved = await invoke_tool(
        service,
        "resolve_tokens",
        {"resourceIds": ["visit-demo"], "record": sanitized["payload"]},
    )
    show("resolved visit", resolved)

    show(
        "profile",
        await invoke_tool(service, "get_deidentified_profile", {"dependentId": "dep-demo"}),
    )

    await service.detector.aclose()
    await service.adapter.aclose()


if __name__ == "__main__":
    asyncio.run(main())
