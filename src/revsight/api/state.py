from typing import Any

# Shared service instances, filled by the API lifespan or the `mcp` CLI command.
# Keys mirror the fields of revsight.cli.Services.
_services: dict[str, Any] = {}
